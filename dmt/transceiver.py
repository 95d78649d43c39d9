"""
DMT Transceiver

PURPOSE:
Transmission chain used by the Monte-Carlo verification: random data,
constellation mapping, IFFT, cyclic extension, optional windowing with
overlap, dispersive noisy channel, optional TEQ, synchronization,
FFT, FEQ and decisions.

SIGNAL CONVENTIONS:
- Normalized transforms: x = sqrt(Nfft) * ifft(X), Y = fft(y) / sqrt(Nfft)
- Blocks are (Nfft x nSymbols); one DMT symbol per column
- The serial stream is the column-wise concatenation of extended symbols
- Noise is white Gaussian with variance N0/2 per sample

USAGE:
    transceiver = DmtTransceiver(config, subchannels, spectral)
    batch = transceiver.transmit(state, rng)
    batch.symbol_errors   # per loaded subchannel
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from dmt.config import DmtConfig, EqualizerType
from dmt.spectral import SpectralModel
from dmt.subchannels import SubchannelSet
from dmt.utils import unbiased_autocorrelation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransmissionBatch:
    """Outcome of one batch of DMT symbols."""
    tx_data: np.ndarray          # (N_loaded x nSymbols) transmitted symbols
    rx_data: np.ndarray          # (N_loaded x nSymbols) decisions
    symbol_errors: np.ndarray    # Errors per loaded subchannel
    tx_autocorr: np.ndarray      # Unbiased autocorrelation, lags 0..Nfft-1
    n_symbols: int

    @property
    def num_errors(self) -> int:
        return int(np.sum(self.symbol_errors))


class DmtTransceiver:
    """
    DMT transmitter, channel and receiver.

    The loading-dependent parts (modems, scale factors) come from the
    LinkState passed to each call, so one transceiver serves every
    retraining epoch.
    """

    def __init__(
        self,
        config: DmtConfig,
        subchannels: SubchannelSet,
        spectral: SpectralModel
    ):
        self.config = config
        self.subchannels = subchannels
        self.spectral = spectral
        self.n_fft = config.n_fft_total
        self.nu = config.cp_length
        self.tau = config.suffix_length
        self.equalization = spectral.equalization
        self.feq = spectral.feq()

        logger.info(
            f"DmtTransceiver initialized: Nfft={self.n_fft}, nu={self.nu}, "
            f"tau={self.tau}, equalizer={self.equalization.kind.name}"
        )

    # ========================================
    # Transmitter
    # ========================================

    def random_data(self, state, rng: np.random.Generator, n_symbols: Optional[int] = None) -> np.ndarray:
        """Uniform random symbols on each loaded subchannel."""
        n_symbols = n_symbols or self.config.n_symbols
        loaded = state.modems.loaded
        orders = state.modems.orders[loaded]
        if len(loaded) == 0:
            return np.zeros((0, n_symbols), dtype=int)
        return rng.integers(0, orders[:, None], size=(len(loaded), n_symbols))

    def map_symbols(self, tx_data: np.ndarray, state) -> np.ndarray:
        """
        Frequency-domain DMT symbols with Hermitian symmetry.

        Returns:
            (Nfft x nSymbols) complex block
        """
        modems = state.modems
        n_symbols = tx_data.shape[1]
        X = np.zeros((self.n_fft, n_symbols), dtype=complex)

        tones = self.subchannels.tones
        for row, n in enumerate(modems.loaded):
            X[tones[n], :] = modems.modulate(n, tx_data[row])

        half = self.n_fft // 2
        X[half + 1:, :] = np.flipud(np.conj(X[1:half, :]))
        X[0, :] = np.real(X[0, :])
        X[half, :] = np.real(X[half, :])
        return X

    def modulate(self, tx_data: np.ndarray, state) -> Tuple[np.ndarray, np.ndarray]:
        """
        Full DMT modulation.

        Returns:
            (u, x): serial transmit stream and the (Nfft x nSymbols)
            time-domain block before cyclic extension
        """
        X = self.map_symbols(tx_data, state)
        x = self.to_time_domain(X)
        return self.cyclic_extension(x), x

    def to_time_domain(self, X: np.ndarray) -> np.ndarray:
        """Normalized IFFT, with the precoder hooks of the active mode."""
        kind = self.equalization.kind
        hook = getattr(self.equalization, "precode", None)

        if kind == EqualizerType.FREQ_PRECODER and hook is not None:
            X = hook(X)
        x = np.real(np.sqrt(self.n_fft) * np.fft.ifft(X, self.n_fft, axis=0))
        if kind == EqualizerType.TIME_PRECODER and hook is not None:
            x = np.real(hook(x))
        return x

    def cyclic_extension(self, x: np.ndarray) -> np.ndarray:
        """
        Add prefix (and suffix with windowing), then serialize.

        With windowing, each extended symbol is windowed and its suffix
        overlaps the prefix of the following symbol.
        """
        n_symbols = x.shape[1]
        period = self.n_fft + self.nu

        if not self.config.windowing:
            x_ext = np.vstack([x[self.n_fft - self.nu:, :], x])
            return x_ext.ravel(order='F')

        x_ext = np.vstack([x[self.n_fft - self.nu:, :], x, x[:self.tau, :]])
        x_ext = self.spectral.window[:, None] * x_ext

        u = np.zeros(period * n_symbols + self.tau)
        for i in range(n_symbols):
            start = i * period
            u[start:start + period + self.tau] += x_ext[:, i]
        return u

    # ========================================
    # Channel
    # ========================================

    def channel(self, u: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        """Dispersive channel followed by additive white Gaussian noise."""
        y = np.convolve(u, self.spectral.pulse)
        if self.config.noise_psd > 0:
            y = y + np.sqrt(self.config.noise_psd) * rng.standard_normal(len(y))
        return y

    # ========================================
    # Receiver
    # ========================================

    def demodulate_time_signal(self, y: np.ndarray, n_symbols: int) -> np.ndarray:
        """
        TEQ, synchronization, slicing, prefix removal, FFT and FEQ.

        Returns:
            (Ntones x nSymbols) equalized frequency-domain samples
        """
        taps = getattr(self.equalization, "real_taps", None)
        z = np.convolve(taps, y) if taps is not None else y

        n0 = self.spectral.cursor
        period = self.n_fft + self.nu
        n_rx = period * n_symbols
        y_sync = z[n0:n0 + n_rx]
        if len(y_sync) < n_rx:
            y_sync = np.concatenate([y_sync, np.zeros(n_rx - len(y_sync))])

        y_sliced = y_sync.reshape((period, n_symbols), order='F')
        y_no_ext = y_sliced[self.nu:, :]

        Y = np.fft.fft(y_no_ext, self.n_fft, axis=0) / np.sqrt(self.n_fft)
        Z = self.feq[:, None] * Y[self.subchannels.tones, :]

        hook = getattr(self.equalization, "receive", None)
        if hook is not None:
            Z = hook(Z)
        return Z

    def decide(self, Z: np.ndarray, state) -> np.ndarray:
        """Constellation decisions on every loaded subchannel."""
        modems = state.modems
        loaded = modems.loaded
        rx_data = np.zeros((len(loaded), Z.shape[1]), dtype=int)
        for row, n in enumerate(loaded):
            rx_data[row] = modems.demodulate(n, Z[n, :])
        return rx_data

    def receive(self, y: np.ndarray, state, n_symbols: int) -> np.ndarray:
        """Decisions for `n_symbols` DMT symbols from the received stream."""
        Z = self.demodulate_time_signal(y, n_symbols)
        return self.decide(Z, state)

    # ========================================
    # End to end
    # ========================================

    def transmit(
        self,
        state,
        rng: np.random.Generator,
        n_symbols: Optional[int] = None
    ) -> TransmissionBatch:
        """
        Run one batch of DMT symbols through the full chain.

        Args:
            state: LinkState with the current loading and modems
            rng: Random generator for data and noise
            n_symbols: Batch size (config.n_symbols if None)

        Returns:
            TransmissionBatch
        """
        n_symbols = n_symbols or self.config.n_symbols
        tx_data = self.random_data(state, rng, n_symbols)
        u, x = self.modulate(tx_data, state)
        y = self.channel(u, rng)
        rx_data = self.receive(y, state, n_symbols)

        symbol_errors = np.sum(tx_data != rx_data, axis=1)
        tx_autocorr = unbiased_autocorrelation(x.ravel(order='F'), self.n_fft - 1)

        return TransmissionBatch(
            tx_data=tx_data,
            rx_data=rx_data,
            symbol_errors=symbol_errors,
            tx_autocorr=tx_autocorr,
            n_symbols=n_symbols,
        )

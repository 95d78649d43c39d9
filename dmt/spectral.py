"""
DMT Spectral Model

PURPOSE:
Frequency-domain view of the effective channel seen by the DMT receiver:
channel frequency response, one-tap frequency equalizer (FEQ) and the
power spectral density of the inter-carrier/inter-symbol distortion
(ICPD) caused by dispersion that the cyclic prefix does not absorb.

ICPD MODEL:
The received block of symbol i (after synchronization at cursor n0 and
prefix removal) is

    y_i = C x_i + (G_0 - C) x_i + sum_{d != 0} G_d x_{i+d}

where C is the ideal circulant response, G_0 the actual response to the
current symbol and G_d (d = -1, +1, ...) the responses to the previous
(post-cursor ISI) and next (pre-cursor ISI) symbols. (G_0 - C) is the
ICI term. With independent symbols of autocorrelation Rxx the distortion
PSD in bin k is

    S(k) = sum_G [Q G Rxx G^T Q^H]_kk ,   G in {G_0 - C, G_d}

and Q is the normalized DFT matrix.

USAGE:
    model = SpectralModel(config, subchannels, pulse)
    gn = compute_gain_to_noise(model, config.noise_psd, model.icpd_psd_analytic())
    s_icpd = model.icpd_psd_empirical(rxx)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np
from scipy.linalg import toeplitz

from dmt.config import ConfigurationError, DmtConfig, EqualizerType
from dmt.equalization import Equalization, NoEqualization
from dmt.subchannels import SubchannelSet

logger = logging.getLogger(__name__)

PRECODER_TYPES = (EqualizerType.FREQ_PRECODER, EqualizerType.TIME_PRECODER)


def pulse_from_frequency_response(
    freq_response: np.ndarray,
    tol: float = 1e-8
) -> np.ndarray:
    """
    Derive a real pulse response from a two-sided frequency response.

    A response that is not Hermitian symmetric within `tol` is a model
    assumption violation: it is logged and the real part of the inverse
    DFT is used anyway.
    """
    freq_response = np.asarray(freq_response, dtype=complex)
    h = np.fft.ifft(freq_response)

    if np.any(np.abs(np.imag(h)) > tol):
        logger.warning(
            "Frequency response is not Hermitian symmetric "
            f"(max imaginary part {np.max(np.abs(np.imag(h))):.3g}), using real part"
        )

    return np.real(h)


@dataclass(frozen=True)
class IsiIciMatrices:
    """Distortion matrices of the effective pulse response."""
    ici: np.ndarray                 # G_0 - C, current symbol
    isi: Dict[int, np.ndarray]      # G_d keyed by symbol offset d != 0

    @property
    def post_cursor(self) -> np.ndarray:
        """ISI from the previous symbol."""
        return self.isi.get(-1, np.zeros_like(self.ici))

    @property
    def pre_cursor(self) -> np.ndarray:
        """ISI from the next symbol."""
        return self.isi.get(1, np.zeros_like(self.ici))

    def all(self):
        return [self.ici] + [self.isi[d] for d in sorted(self.isi)]


class SpectralModel:
    """
    Frequency response, FEQ and ICPD of an (optionally equalized) channel.
    """

    def __init__(
        self,
        config: DmtConfig,
        subchannels: SubchannelSet,
        pulse: np.ndarray,
        equalization: Optional[Equalization] = None,
        window: Optional[np.ndarray] = None
    ):
        """
        Initialize spectral model.

        Args:
            config: Link configuration
            subchannels: Usable subchannels
            pulse: Channel pulse response (real, finite)
            equalization: Equalization variant (plain DMT if None)
            window: Transmit window over the extended symbol, required
                when windowing is enabled
        """
        self.config = config
        self.subchannels = subchannels
        self.equalization = equalization or NoEqualization()
        self.n_fft = config.n_fft_total
        self.nu = config.cp_length
        self.tau = config.suffix_length

        self.pulse = np.asarray(pulse, dtype=float).ravel()
        if len(self.pulse) == 0:
            raise ConfigurationError("Pulse response is empty")
        if len(self.pulse) > self.n_fft:
            logger.warning(f"Pulse response longer than Nfft ({len(self.pulse)} > {self.n_fft})")

        self.equalization.validate(self.pulse, self.nu, subchannels.count)

        self.window = self._check_window(window)
        self.effective_pulse = self.equalization.effective_pulse(self.pulse)
        self.cursor = self.equalization.cursor(self.pulse)

        # Full-length responses
        self.H = np.fft.fft(self.effective_pulse, self.n_fft)
        self._matrices: Optional[IsiIciMatrices] = None

        logger.info(
            f"SpectralModel initialized: Lh={len(self.pulse)}, "
            f"Leff={len(self.effective_pulse)}, n0={self.cursor}, "
            f"equalizer={self.equalization.kind.name}"
        )

    def _check_window(self, window: Optional[np.ndarray]) -> Optional[np.ndarray]:
        if not self.config.windowing:
            return None
        if window is None:
            raise ConfigurationError("Windowing enabled but no window supplied")
        window = np.asarray(window, dtype=float).ravel()
        expected = self.n_fft + self.nu + self.tau
        if len(window) != expected:
            raise ConfigurationError(
                f"Window length {len(window)} does not match Nfft + nu + tau = {expected}"
            )
        return window

    # ========================================
    # Frequency response and FEQ
    # ========================================

    @property
    def tone_response(self) -> np.ndarray:
        """Effective frequency response at the usable tones."""
        return self.H[self.subchannels.tones]

    @property
    def phase_shift(self) -> np.ndarray:
        """Phase rotation introduced by synchronizing at the cursor."""
        k = self.subchannels.tones
        return np.exp(1j * 2 * np.pi * (self.cursor / self.n_fft) * k)

    def feq(self) -> np.ndarray:
        """One-tap frequency equalizer for each usable tone."""
        hn = self.tone_response * self.phase_shift
        feq = np.zeros_like(hn)
        nonzero = np.abs(hn) > 0
        feq[nonzero] = 1.0 / hn[nonzero]
        return feq

    def equalizer_response(self) -> np.ndarray:
        """Frequency response of the TEQ alone (all ones without a TEQ)."""
        taps = getattr(self.equalization, "real_taps", None)
        if taps is None:
            return np.ones(self.n_fft, dtype=complex)
        return np.fft.fft(taps, self.n_fft)

    # ========================================
    # ISI/ICI matrices
    # ========================================

    def transmit_matrix(self) -> np.ndarray:
        """
        Map from one time-domain symbol to its (windowed) cyclic extension.

        Shape (Nfft + nu + tau, Nfft).
        """
        n_ext = self.n_fft + self.nu + self.tau
        rows = np.arange(n_ext)
        T = np.zeros((n_ext, self.n_fft))
        T[rows, (rows - self.nu) % self.n_fft] = 1.0
        if self.window is not None:
            T = self.window[:, None] * T
        return T

    def _block_response(self, T: np.ndarray, offset: int) -> np.ndarray:
        """Response of the current receive block to symbol i + offset."""
        n = np.arange(self.n_fft)
        period = self.n_fft + self.nu
        G = np.zeros((self.n_fft, self.n_fft))

        for m, tap in enumerate(self.effective_pulse):
            if tap == 0:
                continue
            t = self.nu + self.cursor + n - m - offset * period
            valid = (t >= 0) & (t < T.shape[0])
            if np.any(valid):
                G[n[valid]] += tap * T[t[valid]]
        return G

    def _circulant_response(self) -> np.ndarray:
        """Ideal response: circular convolution aligned at the cursor."""
        n = np.arange(self.n_fft)
        C = np.zeros((self.n_fft, self.n_fft))
        for m, tap in enumerate(self.effective_pulse):
            np.add.at(C, (n, (n + self.cursor - m) % self.n_fft), tap)
        return C

    def isi_ici_matrices(self) -> IsiIciMatrices:
        """ISI/ICI matrices of the effective pulse (computed once)."""
        if self._matrices is not None:
            return self._matrices

        T = self.transmit_matrix()
        period = self.n_fft + self.nu
        reach = int(np.ceil((len(self.effective_pulse) + T.shape[0]) / period)) + 1

        isi = {}
        for offset in range(-reach, reach + 1):
            if offset == 0:
                continue
            G = self._block_response(T, offset)
            if np.any(G != 0):
                isi[offset] = G

        ici = self._block_response(T, 0) - self._circulant_response()
        self._matrices = IsiIciMatrices(ici=ici, isi=isi)

        logger.debug(
            f"ISI/ICI matrices: offsets={sorted(isi)}, "
            f"||ICI||={np.linalg.norm(ici):.3g}"
        )
        return self._matrices

    # ========================================
    # ICPD PSD
    # ========================================

    def _normalized_dft(self, G: np.ndarray) -> np.ndarray:
        return np.fft.fft(G, axis=0) / np.sqrt(self.n_fft)

    def icpd_psd_analytic(self) -> np.ndarray:
        """
        ICPD PSD for a flat, uncorrelated input of energy Ex_bar per sample.

        Returns:
            Non-negative PSD over all Nfft bins
        """
        psd = np.zeros(self.n_fft)
        for G in self.isi_ici_matrices().all():
            QG = self._normalized_dft(G)
            psd += np.sum(np.abs(QG) ** 2, axis=1)
        return self.config.ex_bar * psd

    def icpd_psd_empirical(self, rxx: np.ndarray) -> np.ndarray:
        """
        ICPD PSD given the measured transmit autocorrelation.

        Args:
            rxx: Unbiased autocorrelation for lags 0..Nfft-1, or a full
                Nfft x Nfft autocorrelation matrix

        Returns:
            Non-negative PSD over all Nfft bins
        """
        rxx = np.asarray(rxx, dtype=float)
        if rxx.ndim == 1:
            if len(rxx) < self.n_fft:
                raise ValueError(f"Autocorrelation needs {self.n_fft} lags, got {len(rxx)}")
            Rxx = toeplitz(rxx[:self.n_fft])
        else:
            Rxx = rxx

        psd = np.zeros(self.n_fft)
        for G in self.isi_ici_matrices().all():
            QG = self._normalized_dft(G)
            psd += np.real(np.sum((QG @ Rxx) * np.conj(QG), axis=1))

        # An estimated Rxx need not be positive semi-definite
        return np.maximum(psd, 0.0)

    def icpd_psd(self, rxx: Optional[np.ndarray] = None) -> np.ndarray:
        """ICPD PSD for the active equalization mode (zero for precoders)."""
        if self.equalization.kind in PRECODER_TYPES:
            return np.zeros(self.n_fft)
        if rxx is None:
            return self.icpd_psd_analytic()
        return self.icpd_psd_empirical(rxx)

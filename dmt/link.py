"""
DMT Link Pipeline.
End-to-end adaptive loading and verification of one DMT link.

Orchestrates: Subchannels → Spectral model → Gain-to-noise → Water-filling
→ Levin-Campello → Modem bank → Trained loading → Monte-Carlo
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from dmt.config import ConfigurationError, DmtConfig
from dmt.equalization import Equalization, NoEqualization
from dmt.gaintonoise import compute_gain_to_noise
from dmt.loading import levin_campello_loading
from dmt.modem import ModemBank
from dmt.montecarlo import LinkState, MonteCarloResult, MonteCarloSession
from dmt.performance import loading_figures, snr_mfb
from dmt.spectral import SpectralModel
from dmt.subchannels import build_subchannels
from dmt.transceiver import DmtTransceiver
from dmt.utils import get_timestamp_ms, linear_to_db, unbiased_autocorrelation
from dmt.waterfill import WaterFillResult, water_fill

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class LinkReport:
    """Result of a complete link run."""
    # Scalars
    bit_rate: float
    b_bar_waterfill: float
    b_bar_discrete: float
    snr_mfb_db: float
    snr_dmt_db: float
    capacity: float
    capacity_bit_rate: float
    pe_bar_theoretical: float
    unallocated_energy: float

    # Per subchannel
    tones: np.ndarray
    gain_to_noise: np.ndarray
    bits: np.ndarray
    energy: np.ndarray
    snr: np.ndarray
    pe_bar_n: np.ndarray
    waterfill_bits: np.ndarray
    waterfill_energy: np.ndarray

    monte_carlo: Optional[MonteCarloResult]
    timestamp: int
    processing_time_ms: float

    @property
    def pe_bar_measured(self) -> Optional[float]:
        return self.monte_carlo.pe_bar_measured if self.monte_carlo else None

    @property
    def loaded_tones(self) -> np.ndarray:
        return self.tones[self.bits > 0]

    def to_dict(self) -> dict:
        """Plain representation (lists and floats) for serialization."""
        return {
            'bit_rate': self.bit_rate,
            'b_bar_waterfill': self.b_bar_waterfill,
            'b_bar_discrete': self.b_bar_discrete,
            'snr_mfb_db': self.snr_mfb_db,
            'snr_dmt_db': self.snr_dmt_db,
            'capacity': self.capacity,
            'capacity_bit_rate': self.capacity_bit_rate,
            'pe_bar_theoretical': self.pe_bar_theoretical,
            'pe_bar_measured': self.pe_bar_measured,
            'unallocated_energy': self.unallocated_energy,
            'tones': self.tones.tolist(),
            'gain_to_noise': self.gain_to_noise.tolist(),
            'bits': self.bits.tolist(),
            'energy': self.energy.tolist(),
            'snr': self.snr.tolist(),
            'pe_bar_n': self.pe_bar_n.tolist(),
            'waterfill_bits': self.waterfill_bits.tolist(),
            'waterfill_energy': self.waterfill_energy.tolist(),
            'monte_carlo': self.monte_carlo.to_dict() if self.monte_carlo else None,
            'timestamp': self.timestamp,
            'processing_time_ms': self.processing_time_ms,
        }


class DmtLink:
    """
    Complete DMT link: loading, training and verification.

    The channel-dependent parts (subchannels, spectral model, transceiver)
    are built once. Everything that depends on the loading lives in an
    immutable LinkState that retraining replaces.
    """

    def __init__(
        self,
        config: DmtConfig,
        pulse: np.ndarray,
        equalization: Optional[Equalization] = None,
        window: Optional[np.ndarray] = None
    ):
        """
        Initialize DMT link.

        Args:
            config: Link configuration
            pulse: Channel pulse response
            equalization: Equalization variant matching config.equalizer
            window: Transmit window (windowing only)
        """
        self.config = config.check()
        self.equalization = equalization or NoEqualization()
        if self.equalization.kind != config.equalizer:
            raise ConfigurationError(
                f"Equalization {self.equalization.kind.name} does not match "
                f"configured {config.equalizer.name}"
            )

        self.subchannels = build_subchannels(config)
        self.spectral = SpectralModel(config, self.subchannels, pulse, self.equalization, window)
        self.transceiver = DmtTransceiver(config, self.subchannels, self.spectral)

        self.state: Optional[LinkState] = None
        self.reference: Optional[WaterFillResult] = None
        self.session: Optional[MonteCarloSession] = None

        # Statistics
        self.train_passes = 0
        self.retrainings = 0

        logger.info(
            f"DMT Link initialized: Nfft={config.n_fft_total}, nu={config.cp_length}, "
            f"subchannels={self.subchannels.count}, gap={config.gap_db} dB, "
            f"equalizer={config.equalizer.name}"
        )

    def build_state(self, icpd_psd: Optional[np.ndarray] = None) -> LinkState:
        """Loading, modems and figures for a given ICPD PSD."""
        config = self.config
        dims = self.subchannels.dims

        gain_to_noise = compute_gain_to_noise(self.spectral, config.noise_psd, icpd_psd)
        loading = levin_campello_loading(
            gain_to_noise, config.ex_budget, config.gap_db, config.max_load, dims
        )
        if not loading.is_feasible:
            logger.warning("No subchannel can carry a bit within the energy budget")

        modems = ModemBank.build(loading, self.subchannels)
        figures = loading_figures(config, loading.bits, loading.energy, gain_to_noise, dims)

        logger.info(
            f"Loading: {loading.total_bits} bits/symbol, Rb={figures.bit_rate / 1e6:.3f} Mbps, "
            f"b_bar={figures.b_bar:.4f}, Pe_bar={figures.pe_bar:.3g}"
        )
        return LinkState(gain_to_noise, loading, modems, figures)

    def retrain(self, rxx: Optional[np.ndarray] = None) -> LinkState:
        """
        Rebuild the loading from the measured transmit autocorrelation.

        Args:
            rxx: Unbiased transmit autocorrelation (analytic ICPD if None)

        Returns:
            The new LinkState, which also becomes the link's current state
        """
        self.state = self.build_state(self.spectral.icpd_psd(rxx))
        self.retrainings += 1
        return self.state

    def train(self, rng: np.random.Generator, iterations: Optional[int] = None) -> LinkState:
        """
        Trained loading: re-estimate the ICPD from actual transmit data.

        Each pass modulates one batch with the current loading, measures
        its autocorrelation and reloads.
        """
        iterations = self.config.train_iterations if iterations is None else iterations
        for i in range(iterations):
            if not self.state.is_feasible:
                break
            logger.debug(f"Trained loading pass {i + 1}/{iterations}")
            tx_data = self.transceiver.random_data(self.state, rng)
            _, x = self.transceiver.modulate(tx_data, self.state)
            rxx = unbiased_autocorrelation(x.ravel(order='F'), self.config.n_fft_total - 1)
            self.state = self.build_state(self.spectral.icpd_psd(rxx))
            self.train_passes += 1
        return self.state

    def run(self, monte_carlo: bool = True) -> LinkReport:
        """
        Run the complete link.

        Args:
            monte_carlo: Verify the loading by simulation

        Returns:
            LinkReport
        """
        start_time = get_timestamp_ms()
        config = self.config
        dims = self.subchannels.dims

        # Step 1: Initial loading from the flat-input ICPD
        logger.debug("Step 1: Initial loading")
        self.state = self.build_state(self.spectral.icpd_psd())

        # Step 2: Water-filling reference
        logger.debug("Step 2: Water-filling reference")
        self.reference = water_fill(self.state.gain_to_noise, config.ex_budget, config.gap, dims)

        # Step 3: Trained loading
        logger.debug("Step 3: Trained loading")
        self.train_passes = 0
        self.retrainings = 0
        self.train(np.random.default_rng(config.seed))

        # Step 4: Monte-Carlo
        result = None
        if monte_carlo:
            logger.debug("Step 4: Monte-Carlo")
            self.session = MonteCarloSession(
                config, self.state, self.transceiver.transmit, self.retrain
            )
            result = self.session.run()
            self.state = self.session.state

        end_time = get_timestamp_ms()
        report = self._report(result, start_time, end_time - start_time)

        logger.info(
            f"Link run complete: Rb={report.bit_rate / 1e6:.3f} Mbps, "
            f"SNRmfb={report.snr_mfb_db:.2f} dB, SNRdmt={report.snr_dmt_db:.2f} dB, "
            f"Pe_bar={report.pe_bar_theoretical:.3g}"
            f"{f', measured {report.pe_bar_measured:.3g}' if result else ''} "
            f"in {report.processing_time_ms:.2f} ms"
        )
        return report

    def _report(self, result: Optional[MonteCarloResult], timestamp: int, elapsed: float) -> LinkReport:
        state = self.state
        figures = state.figures
        return LinkReport(
            bit_rate=figures.bit_rate,
            b_bar_waterfill=self.reference.total_bits / self.config.n_dim,
            b_bar_discrete=figures.b_bar,
            snr_mfb_db=linear_to_db(snr_mfb(self.config, self.spectral.pulse)),
            snr_dmt_db=figures.snr_dmt_db,
            capacity=figures.capacity,
            capacity_bit_rate=figures.capacity_bit_rate,
            pe_bar_theoretical=figures.pe_bar,
            unallocated_energy=state.loading.unallocated_energy,
            tones=self.subchannels.tones,
            gain_to_noise=np.asarray(state.gain_to_noise),
            bits=np.asarray(state.loading.bits),
            energy=np.asarray(state.loading.energy),
            snr=figures.snr,
            pe_bar_n=figures.pe_n,
            waterfill_bits=self.reference.bits,
            waterfill_energy=self.reference.energy,
            monte_carlo=result,
            timestamp=timestamp,
            processing_time_ms=elapsed,
        )

    def get_stats(self) -> dict:
        """Get link statistics."""
        stats = {
            'subchannels': self.subchannels.count,
            'train_passes': self.train_passes,
            'retrainings': self.retrainings,
            'loaded_subchannels': int(np.sum(self.state.loading.loaded)) if self.state else 0,
        }
        if self.session:
            stats['session_stats'] = self.session.get_stats()
        return stats


# Convenience function for quick runs
def simulate_link(
    pulse: np.ndarray,
    equalization: Optional[Equalization] = None,
    monte_carlo: bool = True,
    **config_kwargs
) -> LinkReport:
    """
    Quick link run with default settings.

    Args:
        pulse: Channel pulse response
        equalization: Equalization variant (plain DMT if None)
        monte_carlo: Verify the loading by simulation
        **config_kwargs: DmtConfig overrides

    Returns:
        LinkReport
    """
    if equalization is not None:
        config_kwargs.setdefault("equalizer", equalization.kind)
    config = DmtConfig(**config_kwargs)
    link = DmtLink(config, pulse, equalization)
    return link.run(monte_carlo=monte_carlo)

"""
Analytic performance figures of a DMT loading.
"""

from dataclasses import dataclass

import numpy as np

from dmt.config import DmtConfig
from dmt.utils import linear_to_db, qfunc


def nnub_pe(bits: np.ndarray, snr: np.ndarray, dims: np.ndarray) -> np.ndarray:
    """
    Nearest-neighbour union bound on the symbol error probability per dimension.

    Args:
        bits: Bits per subchannel
        snr: SNR per dimension on each subchannel
        dims: Real dimensions per subchannel

    Returns:
        Pe per dimension, NaN on unloaded subchannels
    """
    bits = np.asarray(bits, dtype=float)
    snr = np.asarray(snr, dtype=float)
    dims = np.asarray(dims, dtype=float)

    pe = np.full(len(bits), np.nan)
    loaded = bits > 0
    m_bar = 2.0 ** (bits[loaded] / dims[loaded])
    pe[loaded] = 2 * (1 - 1 / m_bar) * qfunc(np.sqrt(3 * snr[loaded] / (m_bar ** 2 - 1)))
    return pe


def average_pe(pe_n: np.ndarray) -> float:
    """Mean Pe over loaded subchannels (0 when nothing is loaded)."""
    pe_n = np.asarray(pe_n, dtype=float)
    if pe_n.size == 0 or np.all(np.isnan(pe_n)):
        return 0.0
    return float(np.nanmean(pe_n))


def snr_mfb(config: DmtConfig, pulse: np.ndarray) -> float:
    """Matched-filter bound (linear)."""
    if config.noise_psd == 0:
        return np.inf
    return config.ex_bar * float(np.linalg.norm(pulse) ** 2) / config.noise_psd


def multichannel_snr_db(b_bar: float, gap: float) -> float:
    """Multi-channel SNR implied by b_bar bits per dimension at the gap."""
    return linear_to_db(gap * (2 ** (2 * b_bar) - 1))


def capacity_per_dimension(snr: np.ndarray, dims: np.ndarray, n_dim: int) -> float:
    """Multi-channel capacity per real dimension, prefix overhead included."""
    cn_bar = 0.5 * np.log2(1 + np.asarray(snr, dtype=float))
    return float(np.sum(cn_bar * dims) / n_dim)


@dataclass(frozen=True)
class LoadingFigures:
    """Figures of merit of a discrete loading."""
    snr: np.ndarray             # SNR per dimension on each subchannel
    pe_n: np.ndarray            # NNUB Pe per dimension
    pe_bar: float               # Mean NNUB Pe over loaded subchannels
    b_bar: float                # Bits per real dimension
    bit_rate: float             # bits/s
    snr_dmt_db: float
    capacity: float             # bits per real dimension
    capacity_bit_rate: float    # bits/s


def loading_figures(
    config: DmtConfig,
    bits: np.ndarray,
    energy: np.ndarray,
    gain_to_noise: np.ndarray,
    dims: np.ndarray
) -> LoadingFigures:
    """Compute the figures of merit of a bit/energy allocation."""
    dims = np.asarray(dims)
    energy = np.asarray(energy, dtype=float)
    gain_to_noise = np.asarray(gain_to_noise, dtype=float)
    # Unloaded tones have no SNR, even when noiseless
    snr = np.zeros(len(energy))
    powered = energy > 0
    snr[powered] = energy[powered] / dims[powered] * gain_to_noise[powered]
    pe_n = nnub_pe(bits, snr, dims)
    b_bar = float(np.sum(bits)) / config.n_dim
    capacity = capacity_per_dimension(snr, dims, config.n_dim)

    return LoadingFigures(
        snr=snr,
        pe_n=pe_n,
        pe_bar=average_pe(pe_n),
        b_bar=b_bar,
        bit_rate=float(np.sum(bits)) / config.t_sym,
        snr_dmt_db=multichannel_snr_db(b_bar, config.gap),
        capacity=capacity,
        capacity_bit_rate=capacity * config.r_sym * config.n_dim,
    )

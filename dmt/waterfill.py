"""
Continuous water-filling allocation.

Reference bound for the discrete loader; its result is reported but never
transmitted. Each subchannel n spans d_n real dimensions and receives
energy d_n * max(0, K - gap/g_n), with the water level K set so the
energies add up to the budget.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WaterFillResult:
    """Continuous bit and energy allocation."""
    bits: np.ndarray        # Bits per subchannel (non-integer)
    energy: np.ndarray      # Energy per subchannel
    water_level: float      # Per-dimension water level K
    active: np.ndarray      # Boolean mask of subchannels with energy
    budget: float

    @property
    def total_bits(self) -> float:
        return float(np.sum(self.bits))

    @property
    def unallocated_energy(self) -> float:
        return float(self.budget - np.sum(self.energy))


def water_fill(
    gain_to_noise: np.ndarray,
    budget: float,
    gap: float,
    dims: Optional[np.ndarray] = None
) -> WaterFillResult:
    """
    Water-filling over a set of parallel subchannels.

    Args:
        gain_to_noise: Gain-to-noise ratio per subchannel, per dimension
        budget: Total energy to distribute
        gap: SNR gap (linear)
        dims: Real dimensions per subchannel (ones if None)

    Returns:
        WaterFillResult
    """
    gn = np.asarray(gain_to_noise, dtype=float)
    dims = np.ones(len(gn), dtype=int) if dims is None else np.asarray(dims, dtype=int)

    if len(dims) != len(gn):
        raise ValueError(f"dims has {len(dims)} entries for {len(gn)} subchannels")
    if budget < 0:
        raise ValueError("Energy budget must be non-negative")
    if gap <= 0:
        raise ValueError("SNR gap must be positive")

    energy = np.zeros(len(gn))
    bits = np.zeros(len(gn))

    # Zero-gain subchannels never take part
    candidates = np.flatnonzero(gn > 0)
    if len(candidates) == 0 or budget == 0:
        logger.debug("Water-filling: no usable subchannel")
        return WaterFillResult(bits, energy, 0.0, np.zeros(len(gn), dtype=bool), budget)

    # Strongest first, so removal always drops the weakest active tone
    order = candidates[np.argsort(-gn[candidates], kind="stable")]
    inv = gap / gn[order]
    d = dims[order]
    cum_dims = np.cumsum(d)
    cum_inv = np.cumsum(d * inv)

    n_active = len(order)
    level = 0.0
    while n_active > 0:
        level = (budget + cum_inv[n_active - 1]) / cum_dims[n_active - 1]
        if level > inv[n_active - 1]:
            break
        n_active -= 1

    active_idx = order[:n_active]
    energy[active_idx] = dims[active_idx] * (level - gap / gn[active_idx])
    bits[active_idx] = 0.5 * dims[active_idx] * np.log2(
        1 + gn[active_idx] * (energy[active_idx] / dims[active_idx]) / gap
    )

    active = np.zeros(len(gn), dtype=bool)
    active[active_idx] = True

    logger.debug(
        f"Water-filling: level={level:.4g}, active={n_active}/{len(gn)}, "
        f"bits={np.sum(bits):.2f}"
    )
    return WaterFillResult(bits, energy, float(level), active, budget)

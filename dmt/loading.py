"""
Discrete bit loading: Levin-Campello, rate-adaptive.

Greedy loading that maximizes the bit rate under an energy budget. Every
increment adds one bit per real dimension of a subchannel (a single bit
on DC/Nyquist, a bit pair on complex tones) so both dimensions of a QAM
tone always carry an integer number of bits. The cost of an increment is
the exact energy difference between the uniform constellations before
and after it:

    E_n(b) = d_n * gap / g_n * (4^(b/d_n) - 1)
    dE_n(b) = d_n * 3 * gap / g_n * 4^(b/d_n)

Energy is accumulated increment by increment, so the final energy of a
tone is exactly E_n(b_n).
A noiseless tone (infinite g_n) has no such cost: it is loaded to its cap
up front with the flat per-dimension share of the budget, so every
loaded tone carries positive energy.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np

from dmt.utils import db_to_linear

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadingResult:
    """Integer bit load and matching energy per subchannel."""
    bits: np.ndarray
    energy: np.ndarray
    budget: float

    @property
    def total_bits(self) -> int:
        return int(np.sum(self.bits))

    @property
    def total_energy(self) -> float:
        return float(np.sum(self.energy))

    @property
    def unallocated_energy(self) -> float:
        return float(self.budget - np.sum(self.energy))

    @property
    def loaded(self) -> np.ndarray:
        """Boolean mask of subchannels that carry bits."""
        return self.bits > 0

    @property
    def is_feasible(self) -> bool:
        """False when no subchannel could be loaded at all."""
        return bool(np.any(self.bits > 0))

    @classmethod
    def empty(cls, n_subchannels: int, budget: float) -> "LoadingResult":
        return cls(
            bits=np.zeros(n_subchannels, dtype=int),
            energy=np.zeros(n_subchannels),
            budget=budget,
        )


def uniform_constellation_energy(
    bits: np.ndarray,
    gain_to_noise: np.ndarray,
    gap: float,
    dims: np.ndarray
) -> np.ndarray:
    """Energy a uniform constellation of `bits` needs at the target gap."""
    bits = np.asarray(bits, dtype=float)
    gn = np.asarray(gain_to_noise, dtype=float)
    energy = np.zeros(len(bits))
    loaded = bits > 0
    energy[loaded] = dims[loaded] * gap / gn[loaded] * (4.0 ** (bits[loaded] / dims[loaded]) - 1)
    return energy


def levin_campello_loading(
    gain_to_noise: np.ndarray,
    budget: float,
    gap_db: float,
    max_load: Union[float, np.ndarray] = math.inf,
    dims: Optional[np.ndarray] = None
) -> LoadingResult:
    """
    Rate-adaptive Levin-Campello loading.

    Args:
        gain_to_noise: Gain-to-noise ratio per subchannel, per dimension
        budget: Energy budget
        gap_db: SNR gap in dB
        max_load: Bit cap, scalar or per subchannel
        dims: Real dimensions per subchannel (ones if None)

    Returns:
        LoadingResult. All zeros when nothing fits in the budget.
    """
    gn = np.asarray(gain_to_noise, dtype=float)
    n = len(gn)
    dims = np.ones(n, dtype=int) if dims is None else np.asarray(dims, dtype=int)
    gap = db_to_linear(gap_db)

    if len(dims) != n:
        raise ValueError(f"dims has {len(dims)} entries for {n} subchannels")
    if np.any(dims < 1):
        raise ValueError("Dimension counts must be positive")
    if budget < 0:
        raise ValueError("Energy budget must be non-negative")

    cap = np.broadcast_to(np.asarray(max_load, dtype=float), (n,)).copy()
    # Whole bits per dimension only
    cap = np.where(np.isfinite(cap), np.floor(cap / dims) * dims, np.inf)

    candidate = (gn > 0) & (cap >= dims)
    if np.any(np.isinf(gn[candidate]) & np.isinf(cap[candidate])):
        raise ValueError("Noiseless subchannels need a finite bit cap")

    bits = np.zeros(n, dtype=int)
    energy = np.zeros(n)
    if not np.any(candidate) or budget == 0:
        logger.info("Levin-Campello: no subchannel can be loaded")
        return LoadingResult(bits, energy, budget)

    # Noiseless tones carry their cap at any energy. They take the flat
    # per-dimension share of the budget and the rest is loaded greedily.
    noiseless = candidate & np.isinf(gn)
    energy_per_dim = budget / np.sum(dims[candidate])
    bits[noiseless] = cap[noiseless].astype(int)
    energy[noiseless] = energy_per_dim * dims[noiseless]
    spent = float(np.sum(energy))

    # Cost of the next increment on every tone, inf when not a candidate
    cost = np.full(n, np.inf)
    greedy = candidate & ~noiseless
    cost[greedy] = dims[greedy] * 3 * gap / gn[greedy]

    while True:
        # argmin returns the lowest index on ties
        k = int(np.argmin(cost))
        increment = cost[k]
        if not np.isfinite(increment) or spent + increment > budget:
            break

        spent += increment
        energy[k] += increment
        bits[k] += dims[k]

        if bits[k] + dims[k] > cap[k]:
            cost[k] = np.inf
        else:
            cost[k] = dims[k] * 3 * gap / gn[k] * 4.0 ** (bits[k] / dims[k])

    assert np.array_equal(bits > 0, energy > 0), "bits and energy disagree on loaded tones"

    result = LoadingResult(bits, energy, budget)
    logger.debug(
        f"Levin-Campello: {result.total_bits} bits on "
        f"{int(np.sum(result.loaded))}/{n} tones, "
        f"unallocated energy {result.unallocated_energy:.4g}"
    )
    return result

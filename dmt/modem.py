"""
DMT modem bank.

One constellation is built per distinct modulation order in use: M-PAM
on one-dimensional tones (DC/Nyquist), square or rectangular QAM on
complex tones. Subchannels refer to the shared entries through an index
table. Each subchannel has its own scale factor (from its allocated
energy) and minimum distance.

Constellations use odd-integer coordinates (distance 2 between
neighbours) and are normalized through `ModemEntry.scale`, which maps
them to unit average energy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

import numpy as np

from dmt.loading import LoadingResult
from dmt.subchannels import SubchannelSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class ModemEntry:
    """Constellation shared by every subchannel with the same order."""
    order: int              # Modulation order M = 2^bits
    dims: int               # 1 for PAM, 2 for QAM
    levels_i: int           # Points along the in-phase axis
    levels_q: int           # Points along the quadrature axis (1 for PAM)
    scale: float            # Normalizes the raw constellation to unit energy
    dmin: float             # Minimum distance at unit energy

    @classmethod
    def create(cls, bits: int, dims: int) -> "ModemEntry":
        """Build the constellation for `bits` bits over `dims` dimensions."""
        if bits < 1:
            raise ValueError("A modem needs at least one bit")
        if dims == 1:
            levels_i, levels_q = 2 ** bits, 1
        elif dims == 2:
            # Rectangular when the bit count is odd
            levels_i = 2 ** ((bits + 1) // 2)
            levels_q = 2 ** (bits // 2)
        else:
            raise ValueError(f"Unsupported dimension count: {dims}")

        raw_energy = (levels_i ** 2 - 1) / 3
        if dims == 2:
            raw_energy += (levels_q ** 2 - 1) / 3
        scale = 1.0 / np.sqrt(raw_energy)

        return cls(
            order=2 ** bits,
            dims=dims,
            levels_i=levels_i,
            levels_q=levels_q,
            scale=float(scale),
            dmin=float(2 * scale),
        )

    @property
    def bits(self) -> int:
        return int(np.log2(self.order))

    @property
    def key(self) -> Tuple[int, int]:
        return self.order, self.dims

    def constellation(self) -> np.ndarray:
        """All raw points, indexed by symbol value."""
        return self.modulate(np.arange(self.order))

    def modulate(self, symbols: np.ndarray) -> np.ndarray:
        """Map integer symbols in [0, M) to raw constellation points."""
        symbols = np.asarray(symbols, dtype=int)
        i = symbols % self.levels_i
        points = (2 * i - self.levels_i + 1).astype(float)
        if self.dims == 1:
            return points
        q = symbols // self.levels_i
        return points + 1j * (2 * q - self.levels_q + 1)

    def demodulate(self, samples: np.ndarray) -> np.ndarray:
        """Nearest-point decision on raw-scale samples."""
        samples = np.asarray(samples)
        i = np.clip(np.round((np.real(samples) + self.levels_i - 1) / 2), 0, self.levels_i - 1)
        if self.dims == 1:
            return i.astype(int)
        q = np.clip(np.round((np.imag(samples) + self.levels_q - 1) / 2), 0, self.levels_q - 1)
        return (i + q * self.levels_i).astype(int)


@dataclass(frozen=True, eq=False)
class ModemBank:
    """Modem arena plus the subchannel lookup built from one loading."""
    entries: List[ModemEntry]
    modem_index: np.ndarray     # Entry per subchannel, -1 when unloaded
    scale: np.ndarray           # Scale factor per subchannel (0 when unloaded)
    dmin: np.ndarray            # Minimum distance per subchannel (0 when unloaded)
    bits: np.ndarray
    dims: np.ndarray
    _by_key: Dict[Tuple[int, int], int] = field(default_factory=dict, repr=False)

    @classmethod
    def build(cls, loading: LoadingResult, subchannels: SubchannelSet) -> "ModemBank":
        """
        Build modems, lookup table, scale factors and minimum distances.

        Args:
            loading: Bit and energy allocation
            subchannels: Subchannel set the allocation refers to

        Returns:
            Fresh ModemBank (empty when nothing is loaded)
        """
        bits = np.asarray(loading.bits, dtype=int)
        energy = np.asarray(loading.energy, dtype=float)
        dims = np.asarray(subchannels.dims, dtype=int)
        if len(bits) != len(dims):
            raise ValueError(f"Loading has {len(bits)} entries for {len(dims)} subchannels")

        entries: List[ModemEntry] = []
        by_key: Dict[Tuple[int, int], int] = {}
        modem_index = np.full(len(bits), -1, dtype=int)
        scale = np.zeros(len(bits))
        dmin = np.zeros(len(bits))

        for n in np.flatnonzero(bits > 0):
            key = (2 ** int(bits[n]), int(dims[n]))
            if key not in by_key:
                by_key[key] = len(entries)
                entries.append(ModemEntry.create(int(bits[n]), int(dims[n])))
            entry = entries[by_key[key]]
            modem_index[n] = by_key[key]

            # Average energy per dimension, which is also E|X_n|^2
            e_bar = energy[n] / dims[n]
            scale[n] = np.sqrt(e_bar) * entry.scale
            dmin[n] = np.sqrt(e_bar) * entry.dmin

        bank = cls(entries, modem_index, scale, dmin, bits, dims, by_key)
        logger.debug(
            f"ModemBank: {len(entries)} constellations for "
            f"{int(np.sum(bits > 0))} loaded subchannels"
        )
        return bank

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def loaded(self) -> np.ndarray:
        """Indices of subchannels with a modem."""
        return np.flatnonzero(self.modem_index >= 0)

    @property
    def orders(self) -> np.ndarray:
        """Modulation order per subchannel (1 when unloaded)."""
        return 2 ** self.bits

    def entry(self, subchannel: int) -> ModemEntry:
        idx = self.modem_index[subchannel]
        if idx < 0:
            raise KeyError(f"Subchannel {subchannel} is not loaded")
        return self.entries[idx]

    def entry_for(self, order: int, dims: int) -> ModemEntry:
        return self.entries[self._by_key[(order, dims)]]

    def modulate(self, subchannel: int, symbols: np.ndarray) -> np.ndarray:
        """Scaled constellation points for one subchannel."""
        entry = self.entry(subchannel)
        return self.scale[subchannel] * entry.modulate(symbols)

    def demodulate(self, subchannel: int, samples: np.ndarray) -> np.ndarray:
        """Decisions for one subchannel from equalized samples."""
        entry = self.entry(subchannel)
        return entry.demodulate(np.asarray(samples) / self.scale[subchannel])

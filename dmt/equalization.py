"""
Equalization and precoding variants.

Each variant carries only what the loading and transmission chain need
from the external design step that produced it:

- NoEqualization: nothing.
- TimeDomainEqualizer: TEQ taps and the delay they were designed for.
- FrequencyPrecoder / TimePrecoder: the per-subchannel energy
  normalization of the precoder plus optional transmit/receive hooks that
  apply the precoder's own transform.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Union

import numpy as np

from dmt.config import ConfigurationError, EqualizerType

logger = logging.getLogger(__name__)

# Maps an (Nfft x nSymbols) or (Ntones x nSymbols) block to a block of the same shape
BlockHook = Callable[[np.ndarray], np.ndarray]


def pulse_cursor(pulse: np.ndarray) -> int:
    """Cursor aligned with the strongest tap of the pulse response."""
    return int(np.argmax(np.abs(pulse)))


@dataclass(frozen=True)
class NoEqualization:
    """Plain DMT, one-tap FEQ only."""
    kind = EqualizerType.NONE

    def effective_pulse(self, pulse: np.ndarray) -> np.ndarray:
        return np.asarray(pulse, dtype=float)

    def cursor(self, pulse: np.ndarray) -> int:
        return pulse_cursor(pulse)

    def validate(self, pulse: np.ndarray, cp_length: int, n_subchannels: int) -> None:
        pass


@dataclass(frozen=True, eq=False)
class TimeDomainEqualizer:
    """Shortening TEQ designed externally (e.g. MMSE or SSNR)."""
    taps: np.ndarray
    delay: int
    kind = EqualizerType.TEQ

    @property
    def real_taps(self) -> np.ndarray:
        return np.real(np.asarray(self.taps))

    def effective_pulse(self, pulse: np.ndarray) -> np.ndarray:
        """Cascade of the channel and the equalizer."""
        return np.convolve(pulse, self.real_taps)

    def cursor(self, pulse: np.ndarray) -> int:
        return int(self.delay)

    def validate(self, pulse: np.ndarray, cp_length: int, n_subchannels: int) -> None:
        if cp_length >= len(pulse) - 1:
            raise ConfigurationError(
                "TEQ is unnecessary: cyclic prefix already covers the channel "
                f"(nu={cp_length}, Lh={len(pulse)})"
            )
        if len(self.taps) == 0:
            raise ConfigurationError("TEQ has no taps")
        if self.delay < 0 or self.delay >= len(pulse) + len(self.taps) - 1:
            raise ConfigurationError(f"TEQ delay {self.delay} outside the shortened response")
        if not np.isrealobj(self.taps) and np.any(np.imag(self.taps) != 0):
            logger.warning("TEQ designed with complex taps, using the real part")


@dataclass(frozen=True, eq=False)
class _Precoder:
    w_norm: np.ndarray
    precode: Optional[BlockHook] = None
    receive: Optional[BlockHook] = None

    def effective_pulse(self, pulse: np.ndarray) -> np.ndarray:
        return np.asarray(pulse, dtype=float)

    def cursor(self, pulse: np.ndarray) -> int:
        return pulse_cursor(pulse)

    def validate(self, pulse: np.ndarray, cp_length: int, n_subchannels: int) -> None:
        w_norm = np.asarray(self.w_norm, dtype=float)
        if w_norm.shape != (n_subchannels,):
            raise ConfigurationError(
                f"Precoder normalization has shape {w_norm.shape}, "
                f"expected ({n_subchannels},)"
            )
        if np.any(w_norm <= 0):
            raise ConfigurationError("Precoder normalization must be positive")


@dataclass(frozen=True, eq=False)
class FrequencyPrecoder(_Precoder):
    """Per-tone ICPD precoder; `precode` acts on the frequency-domain block."""
    kind = EqualizerType.FREQ_PRECODER


@dataclass(frozen=True, eq=False)
class TimePrecoder(_Precoder):
    """Time-domain ICPD precoder; `precode` acts on the IFFT output block."""
    kind = EqualizerType.TIME_PRECODER


Equalization = Union[NoEqualization, TimeDomainEqualizer, FrequencyPrecoder, TimePrecoder]

"""
DMT link configuration constants and data structures.

All parameters of a run live in one immutable DmtConfig. Quantities that
follow from the parameters (FFT size after oversampling, symbol period,
energy budget, ...) are exposed as properties and never stored.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from dmt.utils import db_to_linear


class EqualizerType(Enum):
    """Equalization/precoding schemes."""
    NONE = "none"
    TEQ = "teq"
    FREQ_PRECODER = "freq_precoder"
    TIME_PRECODER = "time_precoder"


class DmtError(Exception):
    """Base class for DMT link errors."""


class ConfigurationError(DmtError, ValueError):
    """Requested configuration is invalid, unnecessary or infeasible."""


# Trained-loading passes run before the Monte-Carlo by default
DEFAULT_TRAIN_ITERATIONS = {
    EqualizerType.NONE: 1,
    EqualizerType.TEQ: 5,
    EqualizerType.FREQ_PRECODER: 0,
    EqualizerType.TIME_PRECODER: 0,
}


@dataclass(frozen=True)
class DmtConfig:
    """Configuration of one DMT link run."""

    # ========================================
    # Multicarrier geometry
    # ========================================
    n_fft: int = 128                  # Used real dimensions (FFT size for L=1)
    alpha: int = 1                    # Tone-grid densification, Fs preserved
    oversampling: int = 1             # L, integer oversampling factor
    cp_length: int = 8                # nu, cyclic prefix
    cs_length: int = 8                # tau, cyclic suffix (windowing only)
    windowing: bool = False           # Lcs windowing + overlap
    tone_spacing: float = 51.75e3     # Subchannel bandwidth (Hz)
    dc_nyquist: bool = False          # Load DC and Nyquist tones

    # ========================================
    # Power, noise and loading
    # ========================================
    tx_power: float = 1e-3            # Px (W)
    noise_psd: float = 1e-10          # N0/2 (W/Hz/dim), variance per dimension
    gap_db: float = 8.8               # SNR gap to capacity (dB)
    max_load: float = math.inf        # Maximum bits per subchannel
    equalizer: EqualizerType = EqualizerType.NONE

    # ========================================
    # Monte-Carlo
    # ========================================
    n_symbols: int = 1000             # DMT symbols per transmission iteration
    max_num_errors: int = 100
    max_iterations: int = 1_000_000
    retrain_factor: float = 2.0       # Measured/theoretical Pe ratio for retraining
    retrain_min_symbols: int = 10_000 # DMT symbols observed before retraining may fire
    max_retrainings: Optional[int] = None
    n_train_iterations: Optional[int] = None
    workers: int = 1
    seed: Optional[int] = None

    # ========================================
    # Derived parameters
    # ========================================
    @property
    def n_used(self) -> int:
        """Used real dimensions after tone-grid densification."""
        return self.n_fft * self.alpha

    @property
    def delta_f(self) -> float:
        """Tone spacing after densification."""
        return self.tone_spacing / self.alpha

    @property
    def n_fft_total(self) -> int:
        """FFT size, which grows with the oversampling ratio."""
        return self.oversampling * self.n_used

    @property
    def fs(self) -> float:
        """Sampling frequency."""
        return self.n_fft_total * self.delta_f

    @property
    def ts(self) -> float:
        return 1.0 / self.fs

    @property
    def n_dim(self) -> int:
        """Total real dimensions per DMT symbol, prefix included."""
        return self.n_fft_total + self.cp_length

    @property
    def suffix_length(self) -> int:
        """Cyclic suffix actually transmitted (zero without windowing)."""
        return self.cs_length if self.windowing else 0

    @property
    def gap(self) -> float:
        """SNR gap in linear scale."""
        return db_to_linear(self.gap_db)

    @property
    def t_sym(self) -> float:
        """Cyclic-prefixed symbol period."""
        return 1.0 / self.delta_f + self.cp_length * self.ts

    @property
    def r_sym(self) -> float:
        return 1.0 / self.t_sym

    @property
    def ex(self) -> float:
        """Average DMT symbol energy."""
        return self.tx_power * self.t_sym

    @property
    def ex_budget(self) -> float:
        """
        Energy budget handed to the loaders.

        The prefix repeats samples, so the budget is discounted by the
        prefix share. The transmitted energy then comes out as Ex.
        """
        return self.ex * self.n_fft_total / (self.n_fft_total + self.cp_length)

    @property
    def ex_bar(self) -> float:
        """Energy per real dimension."""
        return self.ex / self.n_dim

    @property
    def train_iterations(self) -> int:
        if self.n_train_iterations is not None:
            return self.n_train_iterations
        return DEFAULT_TRAIN_ITERATIONS[self.equalizer]

    # ========================================
    # Validation / serialization
    # ========================================
    def validate(self) -> Tuple[bool, List[str]]:
        """Validate the configuration is self-consistent."""
        errors = []

        if self.n_fft < 4 or self.n_fft % 2:
            errors.append("n_fft must be an even integer >= 4")
        if self.alpha < 1:
            errors.append("alpha must be >= 1")
        if self.oversampling < 1 or int(self.oversampling) != self.oversampling:
            errors.append("oversampling must be a positive integer")
        if self.cp_length < 0:
            errors.append("cp_length must be >= 0")
        if self.windowing and self.cs_length < 0:
            errors.append("cs_length must be >= 0")
        if self.windowing and self.cs_length > self.cp_length:
            errors.append("cs_length must not exceed cp_length when windowing")
        if self.tx_power <= 0:
            errors.append("tx_power must be positive")
        if self.noise_psd < 0:
            errors.append("noise_psd must be non-negative")
        if self.noise_psd == 0 and math.isinf(self.max_load):
            errors.append("a noiseless link needs a finite max_load")
        if self.max_load < 0:
            errors.append("max_load must be non-negative")
        if self.n_symbols < 1:
            errors.append("n_symbols must be >= 1")
        if self.retrain_factor <= 0:
            errors.append("retrain_factor must be positive")
        if self.workers < 1:
            errors.append("workers must be >= 1")

        return len(errors) == 0, errors

    def check(self) -> "DmtConfig":
        """Raise ConfigurationError when validate() fails."""
        ok, errors = self.validate()
        if not ok:
            raise ConfigurationError("; ".join(errors))
        return self

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["equalizer"] = self.equalizer.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DmtConfig":
        """Build a config from a plain dictionary (e.g. parsed JSON)."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")

        kwargs = dict(data)
        if "equalizer" in kwargs and not isinstance(kwargs["equalizer"], EqualizerType):
            try:
                kwargs["equalizer"] = EqualizerType(kwargs["equalizer"])
            except ValueError:
                kwargs["equalizer"] = EqualizerType[str(kwargs["equalizer"]).upper()]
        if kwargs.get("max_load") is None and "max_load" in kwargs:
            kwargs["max_load"] = math.inf
        return cls(**kwargs)

"""
Shared pytest fixtures for the DMT tests.
"""

import numpy as np
import pytest

from dmt.config import DmtConfig
from dmt.loading import LoadingResult
from dmt.modem import ModemBank
from dmt.montecarlo import LinkState
from dmt.performance import loading_figures
from dmt.subchannels import build_subchannels


@pytest.fixture
def short_pulse():
    """Two-tap channel fully covered by an 8-sample prefix."""
    return np.array([1.0, 0.5])


@pytest.fixture
def long_pulse():
    """Exponentially decaying channel longer than the prefix."""
    return 0.8 ** np.arange(24)


@pytest.fixture
def small_config():
    """Small, fast configuration with a finite bit cap."""
    return DmtConfig(
        n_fft=32,
        cp_length=8,
        tx_power=1e-3,
        noise_psd=1e-10,
        max_load=8,
        n_symbols=200,
        max_num_errors=50,
        max_iterations=5,
        seed=1234,
    )


@pytest.fixture
def state_factory():
    """Build a LinkState from an explicit bit and energy allocation."""

    def build(config, bits, energy, gain_to_noise=None):
        subchannels = build_subchannels(config)
        bits = np.asarray(bits, dtype=int)
        energy = np.asarray(energy, dtype=float)
        if gain_to_noise is None:
            gain_to_noise = np.full(len(bits), 1e3)
        loading = LoadingResult(bits, energy, float(np.sum(energy)))
        figures = loading_figures(config, bits, energy, gain_to_noise, subchannels.dims)
        return LinkState(gain_to_noise, loading, ModemBank.build(loading, subchannels), figures)

    return build

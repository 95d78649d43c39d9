"""
Unit tests for performance figures and signal utilities.
"""

import pytest
import numpy as np
from dmt.config import DmtConfig
from dmt.performance import (
    average_pe,
    capacity_per_dimension,
    loading_figures,
    multichannel_snr_db,
    nnub_pe,
    snr_mfb
)
from dmt.utils import db_to_linear, linear_to_db, qfunc, unbiased_autocorrelation


class TestNnubPe:
    """Test suite for the error probability bound."""

    def test_unloaded_is_nan(self):
        """Test unloaded subchannels have no error probability."""
        pe = nnub_pe(np.array([0, 2]), np.array([10.0, 10.0]), np.array([2, 2]))

        assert np.isnan(pe[0])
        assert pe[1] > 0

    def test_binary_case(self):
        """Test one bit per dimension reduces to Q(sqrt(SNR))."""
        pe = nnub_pe(np.array([2]), np.array([9.0]), np.array([2]))

        assert np.isclose(pe[0], qfunc(3.0))

    def test_decreases_with_snr(self):
        """Test higher SNR gives lower Pe."""
        pe = nnub_pe(np.array([4, 4]), np.array([10.0, 100.0]), np.array([2, 2]))

        assert pe[1] < pe[0]

    def test_average_ignores_unloaded(self):
        """Test average skips NaN entries."""
        assert np.isclose(average_pe(np.array([np.nan, 1e-3, 3e-3])), 2e-3)
        assert average_pe(np.array([np.nan, np.nan])) == 0.0
        assert average_pe(np.array([])) == 0.0


class TestFigures:
    """Test suite for loading figures of merit."""

    def test_multichannel_snr(self):
        """Test SNR implied by one bit per dimension at 0 dB gap."""
        assert np.isclose(multichannel_snr_db(1.0, 1.0), linear_to_db(3.0))

    def test_capacity(self):
        """Test capacity counts dimensions and prefix overhead."""
        capacity = capacity_per_dimension(np.array([3.0, 15.0]), np.array([2, 2]), 8)

        assert np.isclose(capacity, (2 * 1.0 + 2 * 2.0) / 8)

    def test_snr_mfb(self, short_pulse):
        """Test matched-filter bound uses the pulse energy."""
        config = DmtConfig(n_fft=32)

        expected = config.ex_bar * 1.25 / config.noise_psd
        assert np.isclose(snr_mfb(config, short_pulse), expected)
        assert snr_mfb(DmtConfig(n_fft=32, noise_psd=0.0), short_pulse) == np.inf

    def test_loading_figures(self):
        """Test bit rate and b_bar of an allocation."""
        config = DmtConfig(n_fft=8, cp_length=2)
        bits = np.array([2, 4, 0])
        energy = np.array([1.0, 2.0, 0.0])
        gn = np.array([10.0, 10.0, 10.0])

        figures = loading_figures(config, bits, energy, gn, np.array([2, 2, 2]))

        assert np.isclose(figures.b_bar, 6 / 10)
        assert np.isclose(figures.bit_rate, 6 / config.t_sym)
        assert np.allclose(figures.snr, [5.0, 10.0, 0.0])
        assert np.isnan(figures.pe_n[2])
        assert np.isclose(figures.capacity_bit_rate, figures.capacity * config.r_sym * 10)

    def test_noiseless_figures(self):
        """Test loaded noiseless tones have infinite SNR and no errors."""
        config = DmtConfig(n_fft=8, cp_length=2)
        gn = np.array([np.inf, np.inf])

        figures = loading_figures(config, np.array([4, 0]), np.array([1.0, 0.0]), gn, np.array([2, 2]))

        assert np.isinf(figures.snr[0])
        assert figures.snr[1] == 0.0
        assert figures.pe_n[0] == 0.0
        assert figures.pe_bar == 0.0


class TestUtils:
    """Test suite for signal utilities."""

    def test_db_conversions(self):
        """Test dB round trip."""
        assert np.isclose(linear_to_db(db_to_linear(8.8)), 8.8)
        assert linear_to_db(0) == -np.inf

    def test_qfunc(self):
        """Test Q-function reference values."""
        assert np.isclose(qfunc(0.0), 0.5)
        assert np.isclose(qfunc(3.0), 1.349898e-3, rtol=1e-5)

    def test_unbiased_autocorrelation(self):
        """Test lag-k sums are divided by the number of products."""
        x = np.array([1.0, 2.0, 3.0])

        r = unbiased_autocorrelation(x, 3)

        assert np.allclose(r, [14 / 3, 8 / 2, 3 / 1, 0.0])

    def test_white_sequence(self):
        """Test autocorrelation of white noise is close to a delta."""
        x = np.random.default_rng(0).standard_normal(50_000)

        r = unbiased_autocorrelation(x, 5)

        assert np.isclose(r[0], 1.0, rtol=0.05)
        assert np.all(np.abs(r[1:]) < 0.05)

    def test_empty_sequence(self):
        """Test empty input yields zeros."""
        assert np.all(unbiased_autocorrelation(np.array([]), 2) == 0)

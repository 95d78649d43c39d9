"""
Unit tests for gain-to-noise computation.
"""

import dataclasses

import pytest
import numpy as np
from dmt.config import DmtConfig
from dmt.equalization import FrequencyPrecoder, TimeDomainEqualizer, TimePrecoder
from dmt.gaintonoise import compute_gain_to_noise
from dmt.spectral import SpectralModel
from dmt.subchannels import build_subchannels


def make_model(config, pulse, equalization=None):
    return SpectralModel(config, build_subchannels(config), pulse, equalization)


class TestGainToNoise:
    """Test suite for compute_gain_to_noise."""

    def test_plain_dmt_without_icpd(self, small_config, short_pulse):
        """Test gain-to-noise is |H|^2 / (N0/2) at the used tones."""
        model = make_model(small_config, short_pulse)
        tones = model.subchannels.tones

        gn = compute_gain_to_noise(model, small_config.noise_psd)

        expected = np.abs(np.fft.fft(short_pulse, 32)[tones]) ** 2 / small_config.noise_psd
        assert np.allclose(gn, expected)

    def test_icpd_lowers_gain_to_noise(self, small_config, long_pulse):
        """Test ICPD adds to the noise."""
        model = make_model(small_config, long_pulse)

        clean = compute_gain_to_noise(model, small_config.noise_psd)
        distorted = compute_gain_to_noise(model, small_config.noise_psd, model.icpd_psd_analytic())

        assert np.all(distorted <= clean)
        assert np.any(distorted < clean)

    def test_read_only(self, small_config, short_pulse):
        """Test the result cannot be modified in place."""
        gn = compute_gain_to_noise(make_model(small_config, short_pulse), small_config.noise_psd)

        assert not gn.flags.writeable
        with pytest.raises(ValueError):
            gn[0] = 0

    def test_spectral_null(self):
        """Test a tone at a spectral null gets a negligible gain-to-noise."""
        config = DmtConfig(n_fft=32, dc_nyquist=True)
        model = make_model(config, np.array([1.0, 1.0]))

        gn = compute_gain_to_noise(model, config.noise_psd)

        # H(z) = 1 + z^-1 vanishes at Nyquist
        assert gn[-1] < 1e-12 * np.max(gn)
        assert np.all(np.isfinite(gn))

    def test_noiseless(self, small_config, short_pulse):
        """Test zero noise gives an unbounded gain-to-noise."""
        model = make_model(small_config, short_pulse)

        gn = compute_gain_to_noise(model, 0.0)

        assert np.all(np.isinf(gn))

    def test_precoder_normalization(self, small_config, long_pulse):
        """Test precoders divide the noise by their normalization."""
        count = build_subchannels(small_config).count
        plain = compute_gain_to_noise(make_model(small_config, long_pulse), small_config.noise_psd)

        for cls in (FrequencyPrecoder, TimePrecoder):
            model = make_model(small_config, long_pulse, cls(np.full(count, 2.0)))
            gn = compute_gain_to_noise(model, small_config.noise_psd, np.ones(32))
            assert np.allclose(gn, plain / 2)

    def test_teq_without_icpd(self, small_config, long_pulse):
        """Test TEQ shaping cancels out when there is no ICPD."""
        teq = TimeDomainEqualizer(np.array([1.0, -0.8]), 0)
        plain = compute_gain_to_noise(make_model(small_config, long_pulse), small_config.noise_psd)

        gn = compute_gain_to_noise(make_model(small_config, long_pulse, teq), small_config.noise_psd)

        assert np.allclose(gn, plain)

    def test_teq_with_icpd(self, small_config, long_pulse):
        """Test TEQ gain-to-noise includes the shortened channel's ICPD."""
        model = make_model(small_config, long_pulse, TimeDomainEqualizer(np.array([1.0, -0.8]), 0))
        clean = compute_gain_to_noise(model, small_config.noise_psd)

        gn = compute_gain_to_noise(model, small_config.noise_psd, model.icpd_psd_analytic())

        assert np.all(gn <= clean)

    def test_noise_scaling(self, small_config, short_pulse):
        """Test gain-to-noise is inversely proportional to the noise."""
        model = make_model(small_config, short_pulse)
        louder = dataclasses.replace(small_config, noise_psd=10 * small_config.noise_psd)

        assert np.allclose(
            compute_gain_to_noise(model, louder.noise_psd),
            compute_gain_to_noise(model, small_config.noise_psd) / 10
        )

"""
Unit tests for the DMT transceiver chain.
"""

import pytest
import numpy as np
from dmt.config import DmtConfig
from dmt.equalization import FrequencyPrecoder
from dmt.spectral import SpectralModel
from dmt.subchannels import build_subchannels
from dmt.transceiver import DmtTransceiver, TransmissionBatch


def make_transceiver(config, pulse, equalization=None, window=None):
    subchannels = build_subchannels(config)
    spectral = SpectralModel(config, subchannels, pulse, equalization, window)
    return DmtTransceiver(config, subchannels, spectral)


@pytest.fixture
def noiseless_config():
    return DmtConfig(n_fft=32, cp_length=8, noise_psd=0.0, n_symbols=100)


class TestDmtTransmitter:
    """Test suite for the transmit side."""

    def test_random_data_range(self, noiseless_config, short_pulse, state_factory):
        """Test random symbols fit each subchannel's modulation order."""
        bits = [0, 2, 4, 6] + [2] * 11
        state = state_factory(noiseless_config, bits, np.ones(15))
        transceiver = make_transceiver(noiseless_config, short_pulse)

        data = transceiver.random_data(state, np.random.default_rng(0), 500)

        assert data.shape == (14, 500)
        orders = state.modems.orders[state.modems.loaded]
        assert np.all(data >= 0)
        assert np.all(data < orders[:, None])

    def test_modulated_signal_shapes(self, noiseless_config, short_pulse, state_factory):
        """Test block and serial stream dimensions."""
        state = state_factory(noiseless_config, [4] * 15, np.ones(15))
        transceiver = make_transceiver(noiseless_config, short_pulse)
        data = transceiver.random_data(state, np.random.default_rng(0), 10)

        u, x = transceiver.modulate(data, state)

        assert x.shape == (32, 10)
        assert u.shape == (400,)
        assert np.isrealobj(u)

    def test_cyclic_prefix(self, noiseless_config, short_pulse, state_factory):
        """Test each extended symbol starts with the tail of its block."""
        state = state_factory(noiseless_config, [4] * 15, np.ones(15))
        transceiver = make_transceiver(noiseless_config, short_pulse)
        data = transceiver.random_data(state, np.random.default_rng(0), 3)

        u, x = transceiver.modulate(data, state)

        extended = u.reshape((40, 3), order='F')
        assert np.allclose(extended[:8], x[24:])
        assert np.allclose(extended[8:], x)

    def test_hermitian_symbols(self, noiseless_config, short_pulse, state_factory):
        """Test the frequency block is Hermitian symmetric."""
        state = state_factory(noiseless_config, [2] * 15, np.ones(15))
        transceiver = make_transceiver(noiseless_config, short_pulse)
        data = transceiver.random_data(state, np.random.default_rng(0), 4)

        X = transceiver.map_symbols(data, state)

        assert np.allclose(X[1:], np.conj(X[1:][::-1]))

    def test_transmit_energy(self, noiseless_config, short_pulse, state_factory):
        """Test average symbol energy matches the allocated energy."""
        state = state_factory(noiseless_config, [4] * 15, np.full(15, 2.0))
        transceiver = make_transceiver(noiseless_config, short_pulse)
        data = transceiver.random_data(state, np.random.default_rng(0), 2000)

        _, x = transceiver.modulate(data, state)

        energy_per_symbol = np.mean(np.sum(x ** 2, axis=0))
        assert np.isclose(energy_per_symbol, 30.0, rtol=0.05)


class TestDmtChannel:
    """Test suite for the channel model."""

    def test_noiseless_channel(self, noiseless_config, short_pulse):
        """Test noiseless channel is a plain convolution."""
        transceiver = make_transceiver(noiseless_config, short_pulse)
        u = np.random.default_rng(0).standard_normal(100)

        y = transceiver.channel(u, np.random.default_rng(1))

        assert np.allclose(y, np.convolve(u, short_pulse))

    def test_noise_variance(self, short_pulse):
        """Test additive noise has variance N0/2."""
        config = DmtConfig(n_fft=32, noise_psd=0.25)
        transceiver = make_transceiver(config, short_pulse)
        u = np.zeros(100_000)

        y = transceiver.channel(u, np.random.default_rng(2))

        assert np.isclose(np.var(y), 0.25, rtol=0.05)


class TestDmtRoundTrip:
    """Test suite for noiseless end-to-end transmission."""

    def test_plain_round_trip(self, noiseless_config, short_pulse, state_factory):
        """Test every symbol is recovered without noise."""
        state = state_factory(noiseless_config, [4] * 15, np.ones(15))
        transceiver = make_transceiver(noiseless_config, short_pulse)

        batch = transceiver.transmit(state, np.random.default_rng(0))

        assert isinstance(batch, TransmissionBatch)
        assert batch.n_symbols == 100
        assert batch.num_errors == 0
        assert np.array_equal(batch.tx_data, batch.rx_data)
        assert batch.tx_autocorr.shape == (32,)

    def test_dc_nyquist_round_trip(self, short_pulse, state_factory):
        """Test PAM on DC and Nyquist survives the chain."""
        config = DmtConfig(n_fft=32, cp_length=8, noise_psd=0.0, dc_nyquist=True, n_symbols=50)
        bits = [2] + [4] * 15 + [2]
        state = state_factory(config, bits, np.ones(17))
        transceiver = make_transceiver(config, short_pulse)

        batch = transceiver.transmit(state, np.random.default_rng(1))

        assert batch.num_errors == 0

    def test_oversampled_round_trip(self, short_pulse, state_factory):
        """Test transmission with an oversampled FFT."""
        config = DmtConfig(n_fft=16, oversampling=2, cp_length=8, noise_psd=0.0, n_symbols=50)
        state = state_factory(config, [4] * 8, np.ones(8))
        transceiver = make_transceiver(config, short_pulse)

        batch = transceiver.transmit(state, np.random.default_rng(2))

        assert batch.num_errors == 0

    def test_windowed_round_trip(self, short_pulse, state_factory):
        """Test windowing with overlap leaves the received block intact."""
        config = DmtConfig(n_fft=32, cp_length=8, cs_length=4, windowing=True, noise_psd=0.0, n_symbols=50)
        window = np.ones(44)
        window[:4] = np.linspace(0.2, 0.8, 4)
        window[-4:] = np.linspace(0.8, 0.2, 4)
        state = state_factory(config, [4] * 15, np.ones(15))
        transceiver = make_transceiver(config, short_pulse, window=window)

        batch = transceiver.transmit(state, np.random.default_rng(3))

        assert batch.num_errors == 0

    def test_precoder_hooks(self, noiseless_config, short_pulse, state_factory):
        """Test transmit and receive hooks are applied."""
        calls = []

        def precode(X):
            calls.append("precode")
            return 2 * X

        def receive(Z):
            calls.append("receive")
            return Z / 2

        precoder = FrequencyPrecoder(np.ones(15), precode=precode, receive=receive)
        state = state_factory(noiseless_config, [4] * 15, np.ones(15))
        transceiver = make_transceiver(noiseless_config, short_pulse, precoder)

        batch = transceiver.transmit(state, np.random.default_rng(4))

        assert batch.num_errors == 0
        assert calls == ["precode", "receive"]

    def test_noise_causes_errors(self, short_pulse, state_factory):
        """Test strong noise produces symbol errors."""
        config = DmtConfig(n_fft=32, cp_length=8, noise_psd=1.0, n_symbols=100)
        state = state_factory(config, [6] * 15, np.full(15, 0.01))
        transceiver = make_transceiver(config, short_pulse)

        batch = transceiver.transmit(state, np.random.default_rng(5))

        assert batch.num_errors > 0
        assert batch.symbol_errors.shape == (15,)

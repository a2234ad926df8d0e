"""
test_network.py
~~~~~~~~~~~~~~~

Unit tests for the layer chain.
"""

import numpy as np
import pytest

from layercake.fft import FFT
from layercake.layers import (
    C1dxMatrixLayer,
    C1dxp2Layer,
    ConvolutionLayer,
    Layer,
    MatrixLayer,
    ShapeError,
)
from layercake.network import REVERSIBLE_NETWORK_ID, Network
from layercake.randoms import Float24Source, constant


@pytest.fixture
def small_network():
    """Connected 4 -> 3 -> 2 network with random weights."""
    net = Network()
    net.add_layer(ConvolutionLayer(4, fft=FFT()))
    net.add_layer(C1dxMatrixLayer(3))
    net.add_layer(C1dxp2Layer(2))
    net.connect_layers()
    net.random_variables(Float24Source(seed=11))
    return net


@pytest.mark.unit
class TestConnection:
    """Tests for building and connecting a chain."""

    def test_widths_consistent_after_connect(self, small_network):
        """Test layer[i].m == layer[i+1].n and the last layer self-connects."""
        layers = small_network.layers
        for layer, next_layer in zip(layers, layers[1:]):
            assert layer.m == next_layer.n
        assert layers[-1].m == layers[-1].n
        assert small_network.sizes == [4, 3, 2]

    def test_first_layer_flag(self, small_network):
        """Test that only the first layer is marked as first."""
        flags = [layer.is_first_layer for layer in small_network.layers]
        assert flags == [True, False, False]

    def test_network_id(self):
        """Test the id written to network files."""
        assert Network().network_id == REVERSIBLE_NETWORK_ID == 0x00010000

    def test_add_after_connect_raises(self, small_network):
        """Test that a connected chain cannot grow."""
        with pytest.raises(RuntimeError):
            small_network.add_layer(Layer(2))

    def test_unconnected_network_raises(self):
        """Test that process and evaluate need a connected chain."""
        net = Network()
        net.add_layer(Layer(2))
        with pytest.raises(RuntimeError):
            net.process([1.0, 2.0])
        with pytest.raises(RuntimeError):
            net.evaluate([1.0, 2.0])

    def test_empty_network_raises(self):
        """Test that an empty chain cannot process."""
        net = Network()
        net.connect_layers()
        with pytest.raises(RuntimeError):
            net.process([])

    def test_len_and_repr(self, small_network):
        """Test the container helpers."""
        assert len(small_network) == 3
        assert 'convolution' in repr(small_network)


@pytest.mark.unit
class TestProcessAndEvaluate:
    """Tests for the forward and backward passes."""

    def test_wrong_input_length_raises(self, small_network):
        """Test that inputs must match the first layer's width."""
        with pytest.raises(ShapeError):
            small_network.process([1.0, 2.0, 3.0])

    def test_wrong_feedback_length_raises(self, small_network):
        """Test that feedback must match the last layer's width."""
        small_network.process([1.0, 2.0, 3.0, 4.0])
        with pytest.raises(ShapeError):
            small_network.evaluate([1.0, 2.0, 3.0])

    def test_output_has_last_width(self, small_network):
        """Test that process returns the last layer's values."""
        output = small_network.process([1.0, 2.0, 3.0, 4.0])
        assert output.shape == (2,)
        assert np.all((output > 0.0) & (output < 1.0))

    def test_output_is_a_copy(self, small_network):
        """Test that changing the output does not touch the network."""
        output = small_network.process([1.0, 2.0, 3.0, 4.0])
        output[0] = 42.0
        assert small_network.layers[-1].v[0] != 42.0

    def test_process_is_deterministic(self, small_network):
        """Test that the same input gives the same output."""
        first = small_network.process([0.5, -1.0, 2.0, 0.0])
        second = small_network.process([0.5, -1.0, 2.0, 0.0])
        assert np.array_equal(first, second)

    def test_one_layer_identity_matrix(self):
        """Test an identity matrix as the whole network."""
        layer = MatrixLayer(2)
        net = Network()
        net.add_layer(layer)
        net.connect_layers()
        layer.mx[...] = np.eye(2)

        assert np.allclose(net.process([1.5, -2.5]), [1.5, -2.5])
        net.zero_changes()
        net.evaluate([0.25, 4.0])
        assert np.allclose(layer.get_changes(), [0.25, 4.0])
        assert np.allclose(layer.mxC, np.outer([1.5, -2.5], [0.25, 4.0]))


@pytest.mark.unit
class TestTrainingCycle:
    """Tests for the accumulate / downscale / adjust cycle."""

    def test_zero_then_downscale_keeps_zero(self, small_network):
        """Test that every accumulator stays zero."""
        small_network.process([1.0, 2.0, 3.0, 4.0])
        small_network.evaluate([1.0, -1.0])
        small_network.zero_changes()
        small_network.downscale_changes(3)

        for layer in small_network.layers:
            assert np.array_equal(layer.vC, np.zeros(layer.n))
            for parameter in layer.parameters():
                assert np.array_equal(parameter.changes, np.zeros_like(parameter.changes))

    def test_downscale_by_zero_raises(self, small_network):
        """Test that a zero batch size is refused."""
        with pytest.raises(ValueError):
            small_network.downscale_changes(0)

    def test_gradient_ascent_moves_towards_target(self):
        """Test that repeated batches pull the output towards the target."""
        net = Network()
        net.add_layer(MatrixLayer(3))
        net.add_layer(Layer(2))
        net.connect_layers()
        net.random_variables(Float24Source(seed=12))
        net.set_config(0, 'matrix_change_speed:', 0.1)

        x = np.array([1.0, 0.5, -0.5])
        target = np.array([0.2, -0.7])
        start = np.abs(target - net.process(x)).sum()

        for _ in range(50):
            net.zero_changes()
            net.evaluate(target - net.process(x))
            net.downscale_changes(1)
            net.adjust()

        assert np.abs(target - net.process(x)).sum() < start * 0.1

    def test_random_variables_uses_source(self):
        """Test that random_variables draws every randomized parameter."""
        net = Network()
        net.add_layer(MatrixLayer(2))
        net.add_layer(Layer(3))
        net.connect_layers()
        net.random_variables(constant(0.25))

        assert np.array_equal(net.layers[0].mx, np.full((2, 3), 0.25))


@pytest.mark.unit
class TestConfig:
    """Tests for reading and writing layer configuration."""

    def test_get_config_lists_every_layer(self, small_network):
        """Test the default configuration of each layer."""
        config = small_network.get_config()

        assert config[0] == {'convolution_change_speed:': 0.01}
        assert config[1] == {
            'matrix_change_speed:': 0.01,
            'x-axis_compression:': 1.0
        }
        assert config[2] == {'x-axis_compression:': 1.0}

    def test_get_config_returns_copies(self, small_network):
        """Test that editing the returned config does nothing."""
        small_network.get_config()[0]['convolution_change_speed:'] = 5.0
        assert small_network.layers[0].config['convolution_change_speed:'] == 0.01

    def test_set_config(self, small_network):
        """Test that set_config changes one value."""
        small_network.set_config(1, 'x-axis_compression:', 2.5)
        assert small_network.get_config()[1]['x-axis_compression:'] == 2.5

    def test_set_unknown_label_raises(self, small_network):
        """Test that unknown labels are refused."""
        with pytest.raises(KeyError):
            small_network.set_config(2, 'matrix_change_speed:', 1.0)

    def test_set_unknown_layer_raises(self, small_network):
        """Test that unknown layer indices are refused."""
        with pytest.raises(IndexError):
            small_network.set_config(7, 'x-axis_compression:', 1.0)

    def test_describe(self, small_network):
        """Test the JSON-friendly architecture."""
        assert small_network.describe() == [
            {'kind': 'convolution', 'n': 4, 'm': 3},
            {'kind': 'c1dx_matrix', 'n': 3, 'm': 2},
            {'kind': 'c1dxp2', 'n': 2, 'm': 2},
        ]

import numpy as np
import pytest

from dualnet import (
    FullyConnected, Identity, LeakyReLU, NetworkLayout, Sigmoid, SoftMax,
)


def test_sigmoid():
    values = np.array([0.0, 2.0, -2.0, 9.0], dtype=np.float32)
    Sigmoid().forward(values, 0, 3)
    expected = 1.0 / (1.0 + np.exp(-np.array([0.0, 2.0, -2.0])))
    np.testing.assert_allclose(values[:3], expected, rtol=1e-6)
    # outside the range is untouched
    assert values[3] == 9.0


def test_sigmoid_derivative():
    activated = np.array([0.5, 0.25], dtype=np.float32)
    deltas = np.array([1.0, 2.0], dtype=np.float32)
    Sigmoid().backward(activated, deltas, 0, 2)
    np.testing.assert_allclose(deltas, [0.25, 2.0 * 0.25 * 0.75])


def test_leaky_relu():
    values = np.array([-2.0, 0.0, 3.0], dtype=np.float32)
    LeakyReLU(0.1).forward(values, 0, 3)
    np.testing.assert_allclose(values, [-0.2, 0.0, 3.0], rtol=1e-6)

    deltas = np.ones(3, dtype=np.float32)
    LeakyReLU(0.1).backward(values, deltas, 0, 3)
    np.testing.assert_allclose(deltas, [0.1, 1.0, 1.0], rtol=1e-6)


def test_identity_is_a_no_op():
    activation = Identity()
    values = np.array([-1.0, 5.0], dtype=np.float32)
    deltas = np.array([2.0, 3.0], dtype=np.float32)
    activation.forward(values, 0, 2)
    activation.backward(values, deltas, 0, 2)
    np.testing.assert_array_equal(values, [-1.0, 5.0])
    np.testing.assert_array_equal(deltas, [2.0, 3.0])
    assert activation.forward_source == ''
    assert activation.backward_source == ''


def test_softmax_rows_sum_to_one():
    values = np.array([1.0, 2.0, 3.0, 1000.0, 1000.0, 1000.0], dtype=np.float32)
    softmax = SoftMax()
    softmax.forward(values, 0, 3)
    softmax.forward(values, 3, 6)

    expected = np.exp([1.0, 2.0, 3.0])
    expected /= expected.sum()
    np.testing.assert_allclose(values[:3], expected, rtol=1e-5)
    np.testing.assert_allclose(values[3:], [1 / 3] * 3, rtol=1e-5)


def test_softmax_backward_leaves_deltas():
    activated = np.array([0.2, 0.8], dtype=np.float32)
    deltas = np.array([0.5, -0.5], dtype=np.float32)
    SoftMax().backward(activated, deltas, 0, 2)
    np.testing.assert_array_equal(deltas, [0.5, -0.5])


def test_activation_sources():
    assert 'expf' in Sigmoid().forward_source
    assert 'activated[i]' in Sigmoid().forward_source
    assert 'i0' in SoftMax().forward_source
    assert SoftMax().backward_source == ''
    assert SoftMax.has_interdependencies
    assert not Sigmoid.has_interdependencies


def test_softmax_only_on_output_layer(make_network):
    layout = NetworkLayout()
    layout.add_layer(FullyConnected(2, 3, SoftMax()))
    layout.add_layer(FullyConnected(3, 1, Identity()))
    with pytest.raises(AssertionError):
        make_network(layout)

    layout = NetworkLayout()
    layout.add_layer(FullyConnected(2, 3, Sigmoid()))
    layout.add_layer(FullyConnected(3, 3, SoftMax()))
    network = make_network(layout, 2)
    network.initialize_weights(seed=0)
    for bi in range(2):
        network.set_input(bi, 0, 0.3 * bi)
        network.set_input(bi, 1, -0.7)
    network.predict()
    np.testing.assert_allclose(network.inspect_outputs().sum(axis=1), [1.0, 1.0], rtol=1e-5)

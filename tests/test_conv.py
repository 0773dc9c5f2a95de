import numpy as np

from dualnet import (
    Conv1d, Conv2d, FullyConnected, Identity, LeakyReLU, LearningParams, NetworkLayout,
    Sigmoid,
)


def conv_layout(layer):
    layout = NetworkLayout()
    layout.add_layer(layer)
    return layout


def reference_conv2d(plane, kernel, pad_ends):
    """Plain loops: plane[y, x], kernel[ky, kx], replicate padding."""
    sy, sx = plane.shape
    ky, kx = kernel.shape
    if pad_ends:
        oy, ox = -(ky // 2), -(kx // 2)
        out = np.zeros((sy, sx))
    else:
        oy, ox = 0, 0
        out = np.zeros((sy - ky + 1, sx - kx + 1))
    for y in range(out.shape[0]):
        for x in range(out.shape[1]):
            for cy in range(ky):
                for cx in range(kx):
                    ny = min(max(y + oy + cy, 0), sy - 1)
                    nx = min(max(x + ox + cx, 0), sx - 1)
                    out[y, x] += kernel[cy, cx] * plane[ny, nx]
    return out


def test_conv1d_impulse(make_network):
    network = make_network(conv_layout(Conv1d(10, 1, 3, False, 1, Identity())))
    network.set_weights([-1.0, 2.0, -1.0])
    network.set_input(0, 5, 3.0)
    network.predict()
    np.testing.assert_allclose(network.inspect_outputs()[0], [0, 0, 0, -3, 6, -3, 0, 0])


def test_conv1d_padded_attributes(make_network):
    network = make_network(conv_layout(Conv1d(10, 2, 3, True, 2, Identity())))
    weights = np.zeros(12)
    weights[0:3] = [-1.0, 2.0, -1.0]
    # second output attribute reads the second input attribute
    weights[9] = 1.0
    weights[10] = -1.0
    network.set_weights(weights)
    network.set_input(0, 5, 3.0)
    network.set_input(0, 15, 7.0)
    network.predict()

    expected = np.zeros(20)
    expected[4], expected[5], expected[6] = -3.0, 6.0, -3.0
    expected[15], expected[16] = -7.0, 7.0
    np.testing.assert_allclose(network.inspect_outputs()[0], expected)


def test_conv1d_padding_replicates_edges(make_network):
    network = make_network(conv_layout(Conv1d(4, 1, 3, True, 1, Identity())))
    network.set_weights([1.0, 0.0, 0.0])
    for ni, value in enumerate([5.0, 6.0, 7.0, 8.0]):
        network.set_input(0, ni, value)
    network.predict()
    # out[j] = in[clamp(j - 1)]
    np.testing.assert_allclose(network.inspect_outputs()[0], [5.0, 5.0, 6.0, 7.0])


def test_conv2d_impulse(make_network):
    network = make_network(conv_layout(Conv2d(7, 1, 3, False, 1, Identity())))
    network.set_weights(np.arange(1.0, 10.0))
    network.set_input(0, 4 * 7 + 3, 1.0)
    network.predict()

    out = network.inspect_outputs()[0].reshape(5, 5)
    expected = np.zeros((5, 5))
    expected[2:5, 1:4] = [[9, 8, 7], [6, 5, 4], [3, 2, 1]]
    np.testing.assert_allclose(out, expected)


def test_conv2d_matches_reference(make_network):
    rng = np.random.default_rng(4)
    for pad_ends in (False, True):
        network = make_network(conv_layout(Conv2d((6, 5), 1, (3, 2), pad_ends, 1, Identity())))
        kernel = rng.uniform(-1, 1, size=(2, 3))
        plane = rng.uniform(-1, 1, size=(5, 6))
        network.set_weights(kernel.ravel())
        for ni, value in enumerate(plane.ravel()):
            network.set_input(0, ni, value)
        network.predict()
        expected = reference_conv2d(plane, kernel, pad_ends)
        np.testing.assert_allclose(network.inspect_outputs()[0], expected.ravel(), rtol=1e-5, atol=1e-6)


def test_conv1d_equals_flat_conv2d(make_network):
    def build(first):
        layout = NetworkLayout()
        layout.add_layer(first)
        layout.add_layer(FullyConnected(24, 2, Sigmoid()))
        return make_network(layout, 2)

    series = build(Conv1d(12, 2, 3, True, 2, Sigmoid()))
    plane = build(Conv2d((12, 1), 2, (3, 1), True, 2, Sigmoid()))
    assert series.layout.num_weights == plane.layout.num_weights
    series.initialize_weights(seed=9)
    plane.set_weights(series.inspect_weights())

    rng = np.random.default_rng(2)
    params = LearningParams(0.2)
    for _ in range(3):
        for bi in range(2):
            for ni in range(24):
                value = rng.uniform(-1, 1)
                series.set_input(bi, ni, value)
                plane.set_input(bi, ni, value)
            for no in range(2):
                value = rng.uniform(0, 1)
                series.set_target(bi, no, value)
                plane.set_target(bi, no, value)
        error_series = series.learn(params, needs_error=True)
        error_plane = plane.learn(params, needs_error=True)
        assert abs(error_series - error_plane) < 1e-6

    np.testing.assert_allclose(series.inspect_outputs(), plane.inspect_outputs(), rtol=1e-6)
    np.testing.assert_allclose(series.inspect_weights(), plane.inspect_weights(), rtol=1e-6, atol=1e-7)


def train_edge_detector(network, kernel, positions, size):
    """
    Feed single impulses and their filtered response as target.

    With one impulse of height v per step, every weight moves by
    lr * v^2 * (target_weight - weight), independently of the others.
    """
    kernel = np.asarray(kernel, dtype=float)
    params = LearningParams(1.0)
    heights = (0.9, 0.8)
    for step, (px, py) in enumerate(positions):
        value = heights[step % 2]
        plane = np.zeros(size)
        plane[py, px] = value
        target = reference_conv2d(plane, kernel, True).ravel()
        for ni, v in enumerate(plane.ravel()):
            network.set_input(0, ni, v)
        for no, v in enumerate(target):
            network.set_target(0, no, v)
        network.learn(params)


def test_conv1d_learns_edge_detector(make_network):
    network = make_network(conv_layout(Conv1d(10, 1, 3, True, 1, Identity())))
    network.initialize_weights(seed=21)
    kernel = [[-1.0, 2.0, -1.0]]
    positions = [(2 + step % 6, 0) for step in range(10)]
    train_edge_detector(network, kernel, positions, (1, 10))
    np.testing.assert_allclose(network.inspect_weights(), kernel[0], atol=1e-3)


def test_conv2d_learns_edge_detector(make_network):
    network = make_network(conv_layout(Conv2d(8, 1, 3, True, 1, Identity())))
    network.initialize_weights(seed=22)
    kernel = [[0.0, -1.0, 0.0], [-1.0, 4.0, -1.0], [0.0, -1.0, 0.0]]
    positions = [(2 + step % 4, 5 - step % 3) for step in range(10)]
    train_edge_detector(network, kernel, positions, (8, 8))
    np.testing.assert_allclose(network.inspect_weights(), np.ravel(kernel), atol=1e-3)


def test_numpy_scalar_shapes(make_network):
    layout = NetworkLayout()
    layout.add_layer(Conv1d(np.int64(10), np.int64(1), np.int64(3), False, np.int32(2), LeakyReLU(np.float32(0.1))))
    layout.add_layer(Conv2d((np.int64(8), np.int64(2)), 1, np.int64(3), True, 1, Identity()))
    layout.add_layer(FullyConnected(np.int64(16), np.int64(2), Identity()))
    assert layout.num_weights == 6 + 9 + 32
    assert all(type(layer.num_weights) is int for layer in layout.layers)

    network = make_network(layout, 2)
    network.initialize_weights(seed=13)
    for bi in range(2):
        for ni in range(10):
            network.set_input(bi, ni, 0.1 * ni - bi)
    network.set_target(0, 0, 1.0)
    network.learn(LearningParams(0.1))
    network.predict()
    assert network.inspect_outputs().shape == (2, 2)


def test_conv1d_learns_edge_detector_per_attribute(make_network):
    """
    Two input and two output attributes: output 0 filters input 0 with
    [-1, 2, -1], output 1 filters input 1 with [1, -1, 0]. The impulses of the
    two attributes sit far enough apart that no output reads both.
    """
    network = make_network(conv_layout(Conv1d(10, 2, 3, True, 2, Identity())))
    network.initialize_weights(seed=23)
    kernels = np.zeros((2, 2, 1, 3))
    kernels[0, 0, 0] = [-1.0, 2.0, -1.0]
    kernels[1, 1, 0] = [1.0, -1.0, 0.0]

    params = LearningParams(1.0)
    for step in range(10):
        planes = np.zeros((2, 1, 10))
        planes[0, 0, 2 + step % 2] = 0.9
        planes[1, 0, 6 + step % 2] = 0.8
        for ni, value in enumerate(planes.ravel()):
            network.set_input(0, ni, value)
        for out_attr in range(2):
            target = sum(reference_conv2d(planes[a], kernels[out_attr, a], True) for a in range(2))
            for nx, value in enumerate(target.ravel()):
                network.set_target(0, out_attr * 10 + nx, value)
        network.learn(params)

    expected = np.zeros(12)
    expected[0:3] = [-1.0, 2.0, -1.0]
    # weight = out_attr * 6 + in_attr * 3 + kx
    expected[9:12] = [1.0, -1.0, 0.0]
    np.testing.assert_allclose(network.inspect_weights(), expected, atol=1e-3)

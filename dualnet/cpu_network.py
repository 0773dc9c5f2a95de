"""
CPU Network - scalar reference backend

Runs every layer's compiled procedure in plain nested loops over NumPy
float32 buffers, on one thread.
"""
import math

import numpy as np

from .network import Network


class CPUKernelContext:
    """
    One layer bound to the buffers of a CPUNetwork.

    Layer procedures read and write through this view; every index is range
    checked against the layer window.
    """

    def __init__(self, network, window):
        self.window = window
        self.batch_size = window.batch_size
        self.inputs = network.inputs if window.external_input else network.activated
        self.weights = network.weights
        self.activated = network.activated
        self.deltas = network.deltas

    def get_input(self, bi, ni):
        return float(self.inputs[self.window.in_index(bi, ni)])

    def get_output(self, bi, no):
        return float(self.activated[self.window.out_index(bi, no)])

    def get_weight(self, index):
        return float(self.weights[self.window.weight_index(index)])

    def set_weight(self, index, value):
        self.weights[self.window.weight_index(index)] = value

    def get_out_delta(self, bi, no):
        return float(self.deltas[self.window.out_index(bi, no)])

    def set_out_delta(self, bi, no, value):
        self.deltas[self.window.out_index(bi, no)] = value

    def add_in_delta(self, bi, ni, value):
        assert not self.window.external_input, "The first layer has no input deltas"
        self.deltas[self.window.in_index(bi, ni)] += value

    def set_out_sum(self, bi, no, value):
        self.activated[self.window.out_index(bi, no)] = value


class CPUNetwork(Network):
    """
    Scalar backend.

    Args:
        layout: NetworkLayout
        batch_size: Number of rows processed per call
    """

    def __init__(self, layout, batch_size):
        super().__init__(
            layout, batch_size,
            np.zeros(layout.num_inputs * batch_size, dtype=np.float32),
            np.zeros(layout.num_weights, dtype=np.float32),
            np.zeros(layout.num_nodes * batch_size, dtype=np.float32),
            np.zeros(layout.num_outputs * batch_size, dtype=np.float32),
            np.zeros(layout.num_nodes * batch_size, dtype=np.float32),
        )

    def set_input(self, bi, ni, value):
        self.inputs[self._check_input(bi, ni)] = value

    def set_target(self, bi, no, value):
        self.targets[self._check_target(bi, no)] = value

    def prepare_inputs(self):
        # inputs are written in place
        pass

    def prepare_targets(self):
        pass

    def clear_deltas(self):
        self.deltas.fill(0.0)

    def forward_layer(self, layer, window):
        context = CPUKernelContext(self, window)
        activation = layer.activation
        for bi in range(self.batch_size):
            for no in range(window.num_outputs):
                layer.apply_forward(context, bi, no)
            i0 = window.out_index(bi, 0)
            activation.forward(self.activated, i0, i0 + window.num_outputs)

    def evaluate(self, window, needs_error):
        context = CPUKernelContext(self, window)
        num_outputs = window.num_outputs
        error_sum = 0.0
        for bi in range(self.batch_size):
            for no in range(num_outputs):
                expected = float(self.targets[bi * num_outputs + no])
                delta = expected - context.get_output(bi, no)
                context.set_out_delta(bi, no, delta)
                error_sum += delta * delta
        return math.sqrt(error_sum / self.batch_size)

    def backward_layer(self, layer, window, params, gradient):
        context = CPUKernelContext(self, window)
        activation = layer.activation
        for bi in range(self.batch_size):
            i0 = window.out_index(bi, 0)
            activation.backward(self.activated, self.deltas, i0, i0 + window.num_outputs)

        for weight_index in range(layer.num_weights):
            layer.apply_backward(context, weight_index, params, gradient)

        if gradient and params.normalize:
            self.normalize_deltas(params, *window.input_range)

    def normalize_deltas(self, params, i0, i1):
        """Scale deltas[i0:i1] so that their largest magnitude equals the learning rate."""
        if i1 - i0 < 2:
            return
        segment = self.deltas[i0:i1]
        abs_max = max(float(np.abs(segment).max()), 1e-30)
        segment *= params.learning_rate / abs_max

    def set_weights(self, weights):
        self.weights[:] = self._check_weights(weights)

    def inspect_weights(self):
        return self.weights.copy()

    def inspect_deltas(self):
        return self.deltas.copy()

    def inspect_activated(self):
        return self.activated.copy()

"""
CuPy Network - parallel CUDA backend

Compiles each distinct layer/activation formula into a CuPy RawKernel (cached
for the whole process) and dispatches it over the batch x output or weight
index space. Every phase ends with a full device barrier before the next one
reads the buffers.

Requirements:
    pip install cupy-cuda11x  # For CUDA 11.x
    # or
    pip install cupy-cuda12x  # For CUDA 12.x
"""
import math

import cupy as cp
import numpy as np

from .cache import KernelCache
from .kernels import (
    ActivationKey, BackwardKey, ClearKey, EvalKey, ForwardKey,
    activation_kernel_source, backward_kernel_source, block_1d, block_2d,
    clear_kernel_source, eval_kernel_source, forward_kernel_source, grid_for,
)
from .network import Network

_forward_kernels = KernelCache(
    lambda key: cp.RawKernel(forward_kernel_source(key), 'forward'), name='forward')
_backward_kernels = KernelCache(
    lambda key: cp.RawKernel(backward_kernel_source(key), 'backward'), name='backward')
_activation_kernels = KernelCache(
    lambda key: cp.RawKernel(activation_kernel_source(key, inverse=False), 'activation_forward'),
    name='activation')
_activation_inv_kernels = KernelCache(
    lambda key: cp.RawKernel(activation_kernel_source(key, inverse=True), 'activation_backward'),
    name='activation_inv')
_eval_kernels = KernelCache(
    lambda key: cp.RawKernel(eval_kernel_source(key), 'evaluate'), name='eval')
_clear_kernels = KernelCache(
    lambda key: cp.RawKernel(clear_kernel_source(key), 'clear'), name='clear')


def synchronize():
    """Full barrier: every dispatched phase has finished writing its buffers."""
    cp.cuda.Stream.null.synchronize()


class GPUNetwork(Network):
    """
    Parallel backend on a CUDA device.

    Inputs and targets are staged in host arrays by set_input/set_target and
    uploaded by prepare_inputs/prepare_targets.

    Args:
        layout: NetworkLayout
        batch_size: Number of rows processed per call
    """

    def __init__(self, layout, batch_size):
        super().__init__(
            layout, batch_size,
            cp.zeros(layout.num_inputs * batch_size, dtype=cp.float32),
            cp.zeros(layout.num_weights, dtype=cp.float32),
            cp.zeros(layout.num_nodes * batch_size, dtype=cp.float32),
            cp.zeros(layout.num_outputs * batch_size, dtype=cp.float32),
            cp.zeros(layout.num_nodes * batch_size, dtype=cp.float32),
        )
        self.host_inputs = np.zeros(layout.num_inputs * batch_size, dtype=np.float32)
        self.host_targets = np.zeros(layout.num_outputs * batch_size, dtype=np.float32)

    def set_input(self, bi, ni, value):
        self.host_inputs[self._check_input(bi, ni)] = value

    def set_target(self, bi, no, value):
        self.host_targets[self._check_target(bi, no)] = value

    def prepare_inputs(self):
        self.inputs.set(self.host_inputs)

    def prepare_targets(self):
        self.targets.set(self.host_targets)

    def clear_deltas(self):
        size = self.deltas.size
        block = block_1d(512)
        _clear_kernels[ClearKey()](grid_for(block, size), block, (self.deltas, np.int32(size)))
        synchronize()

    def _window_args(self, window):
        return (
            np.int32(window.input_offset), np.int32(window.output_offset),
            np.int32(window.weight_offset),
            np.int32(window.num_inputs), np.int32(window.num_outputs),
        )

    def _layer_inputs(self, window):
        return self.inputs if window.external_input else self.activated

    def forward_layer(self, layer, window):
        kernel = _forward_kernels[ForwardKey(self.batch_size, layer.num_outputs, layer.forward_source)]
        block = block_2d(self.batch_size, window.num_outputs)
        kernel(grid_for(block, self.batch_size, window.num_outputs), block,
               (self.weights, self._layer_inputs(window), self.activated) + self._window_args(window))
        synchronize()

        self._run_activation(layer, window, inverse=False)

    def _run_activation(self, layer, window, inverse):
        activation = layer.activation
        source = activation.backward_source if inverse else activation.forward_source
        if not source:
            return
        key = ActivationKey(self.batch_size, layer.num_outputs, source, activation.has_interdependencies)
        if inverse:
            kernel = _activation_inv_kernels[key]
            args = (self.activated, self.deltas, np.int32(window.output_offset))
        else:
            kernel = _activation_kernels[key]
            args = (self.activated, np.int32(window.output_offset))

        if activation.has_interdependencies:
            block = block_1d(self.batch_size)
            grid = grid_for(block, self.batch_size)
        else:
            block = block_2d(self.batch_size, layer.num_outputs)
            grid = grid_for(block, self.batch_size, layer.num_outputs)
        kernel(grid, block, args)
        synchronize()

    def evaluate(self, window, needs_error):
        kernel = _eval_kernels[EvalKey(self.batch_size, window.num_outputs)]
        block = block_2d(self.batch_size, window.num_outputs)
        kernel(grid_for(block, self.batch_size, window.num_outputs), block,
               (self.targets, self.activated, self.deltas, np.int32(window.output_offset)))
        synchronize()

        if not needs_error:
            # reading deltas back is a device-to-host transfer per step
            return 0.0
        start, stop = window.output_range
        deltas = cp.asnumpy(self.deltas[start:stop]).astype(np.float64)
        return math.sqrt(float(np.sum(deltas * deltas)) / self.batch_size)

    def backward_layer(self, layer, window, params, gradient):
        self._run_activation(layer, window, inverse=True)

        kernel = _backward_kernels[BackwardKey(self.batch_size, layer.num_weights, layer.backward_source)]
        block = block_1d(layer.num_weights)
        kernel(grid_for(block, layer.num_weights), block,
               (self.weights, self._layer_inputs(window), self.deltas)
               + self._window_args(window)
               + (np.float32(params.learning_rate), np.int32(1 if gradient else 0)))
        synchronize()

        if gradient and params.normalize:
            self.normalize_deltas(params, *window.input_range)

    def normalize_deltas(self, params, i0, i1):
        """Scale deltas[i0:i1] so that their largest magnitude equals the learning rate."""
        if i1 - i0 < 2:
            return
        segment = self.deltas[i0:i1]
        abs_max = max(float(cp.abs(segment).max()), 1e-30)
        segment *= params.learning_rate / abs_max
        synchronize()

    def set_weights(self, weights):
        self.weights.set(self._check_weights(weights))

    def inspect_weights(self):
        return cp.asnumpy(self.weights)

    def inspect_deltas(self):
        return cp.asnumpy(self.deltas)

    def inspect_activated(self):
        return cp.asnumpy(self.activated)

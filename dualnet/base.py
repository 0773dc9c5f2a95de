"""
Layer Base Class - shape descriptor plus forward/backward formulas
"""
import abc
from functools import cached_property

from .formula import (
    CUDA, INT, Assign, CheckFinite, Do, For, If, Let,
    call, compile_procedure, render, var,
)

FORWARD_PARAMS = ('net', 'bi', 'no')
BACKWARD_PARAMS = ('net', 'weight_index', 'batch_size', 'learning_rate', 'gradient')


class Layer(abc.ABC):
    """
    Base class for all layers.

    A layer maps num_inputs values to num_outputs values through num_weights
    weights. Its offsets into the flat network buffers are assigned exactly
    once, when the layer is added to a NetworkLayout.

    Subclasses describe their math as formulas:
        forward_formula():  one output sum for batch row 'bi', unit 'no'
        backward_formula(): one weight 'weight_index' across the whole batch,
                            using 'batch_size', 'learning_rate', 'gradient'
    Buffers are only touched through get_input, get_weight, set_weight,
    get_out_delta, add_in_delta and set_out_sum.
    """

    def __init__(self, num_inputs, num_weights, num_outputs, num_inputs_per_node, activation):
        assert num_inputs > 0 and num_outputs > 0 and num_weights > 0, (
            f"Layer shape must be positive, got {num_inputs} -> {num_outputs} "
            f"with {num_weights} weights")
        self.num_inputs = int(num_inputs)
        self.num_weights = int(num_weights)
        self.num_outputs = int(num_outputs)
        self.num_inputs_per_node = int(num_inputs_per_node)
        self.activation = activation

        self.input_offset = None
        self.output_offset = None
        self.weight_offset = None

    @abc.abstractmethod
    def forward_formula(self):
        """Statements computing one output sum."""

    @abc.abstractmethod
    def backward_formula(self):
        """Statements updating one weight."""

    @cached_property
    def forward_source(self):
        """CUDA C body of the forward kernel, shape constants baked in."""
        return render(self.forward_formula(), CUDA)

    @cached_property
    def backward_source(self):
        """CUDA C body of the backward kernel, shape constants baked in."""
        return render(self.backward_formula(), CUDA)

    @cached_property
    def _forward(self):
        return compile_procedure('forward', FORWARD_PARAMS, self.forward_formula())

    @cached_property
    def _backward(self):
        return compile_procedure('backward', BACKWARD_PARAMS, self.backward_formula())

    def assign_offsets(self, input_offset, output_offset, weight_offset):
        assert self.weight_offset is None, f"{self!r} already belongs to a layout"
        self.input_offset = input_offset
        self.output_offset = output_offset
        self.weight_offset = weight_offset

    def apply_forward(self, network, bi, no):
        """
        Compute the output sum of unit 'no' for batch row 'bi'.

        Args:
            network: Bound layer view (see CPUKernelContext)
            bi: Batch index
            no: Output index within the layer
        """
        self._forward(network, bi, no)

    def apply_backward(self, network, weight_index, params, gradient):
        """
        Update one weight from the whole batch.

        Args:
            network: Bound layer view (see CPUKernelContext)
            weight_index: Weight index within the layer
            params: LearningParams
            gradient: Whether to propagate deltas to the previous layer
        """
        self._backward(network, weight_index, network.batch_size, params.learning_rate, gradient)

    def __repr__(self):
        return (f"{type(self).__name__}({self.num_inputs} -> {self.num_outputs}, "
                f"weights={self.num_weights}, activation={self.activation!r})")


def weight_update_formula(prologue, loops, in_index, out_index):
    """
    Backward formula shared by all layer types.

    For every batch row and every position produced by 'loops' (pairs of
    loop variable and count, outermost first), the weight gradient gathers
    input * delta. With 'gradient' set, original_weight * delta is scattered
    into the input-side delta. The weight is written once, at the end, so
    every batch row sees the original value.

    Args:
        prologue: Statements decomposing 'weight_index'
        loops: [(name, count), ...] nested inside the batch loop
        in_index: Input unit expression inside the innermost loop
        out_index: Output unit expression inside the innermost loop
    """
    bi, ni, no = var('bi'), var('ni'), var('no')
    original, delta_weight = var('original'), var('delta_weight')
    value, delta = var('input_value'), var('delta')

    inner = [
        Let('ni', in_index, INT),
        Let('no', out_index, INT),
        Let('input_value', call('get_input', bi, ni)),
        CheckFinite('input_value', "Input is not finite"),
        Let('delta', call('get_out_delta', bi, no)),
        Assign('delta_weight', value * delta, '+='),
        If(var('gradient'), [
            Do(call('add_in_delta', bi, ni, original * delta)),
        ]),
    ]
    for name, count in reversed(loops):
        inner = [For(name, 0, count, inner)]

    return list(prologue) + [
        Let('original', call('get_weight', var('weight_index'))),
        Let('delta_weight', 0.0),
        For('bi', 0, var('batch_size'), inner),
        Do(call('set_weight', var('weight_index'), original + var('learning_rate') * delta_weight)),
    ]

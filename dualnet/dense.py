"""
Fully Connected Layer - dense all-to-all weights
"""
from .base import Layer, weight_update_formula
from .formula import INT, Assign, Do, For, Let, call, var


class FullyConnected(Layer):
    """
    Fully Connected Layer.

    Weight 'no * num_inputs + ni' connects input ni to output no.

    Args:
        num_inputs: Number of input units
        num_outputs: Number of output units
        activation: Activation applied to the output sums
    """

    def __init__(self, num_inputs, num_outputs, activation):
        num_inputs, num_outputs = int(num_inputs), int(num_outputs)
        super().__init__(num_inputs, num_inputs * num_outputs, num_outputs, num_inputs, activation)

    def forward_formula(self):
        bi, no, ni, total = var('bi'), var('no'), var('ni'), var('total')
        n = self.num_inputs
        return [
            Let('total', 0.0),
            For('ni', 0, n, [
                Assign('total', call('get_weight', no * n + ni) * call('get_input', bi, ni), '+='),
            ]),
            Do(call('set_out_sum', bi, no, total)),
        ]

    def backward_formula(self):
        weight_index = var('weight_index')
        n = self.num_inputs
        return weight_update_formula(
            [
                Let('in_unit', weight_index % n, INT),
                Let('out_unit', weight_index // n, INT),
            ],
            [],
            var('in_unit'), var('out_unit'),
        )

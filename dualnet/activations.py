"""
Activation Functions - shared by the scalar and the CUDA backend

Each activation is written once as a formula. Elementwise formulas address a
single element 'i'; interdependent formulas (softmax) see one whole batch row
'[i0, i1)' and must never be split across invocations.
"""
from .formula import (
    CUDA, Assign, For, If, Let, Store,
    compile_procedure, exp, fmax, load, render, var,
)

i, i0, i1 = var('i'), var('i0'), var('i1')


class Activation:
    """
    Base class for activations.

    forward_formula turns raw output sums in 'activated' into activated values,
    in place. backward_formula multiplies 'deltas' by the local derivative,
    reading the already activated values, in place.

    Args:
        forward_formula: Statements over the 'activated' buffer
        backward_formula: Statements over 'activated' and 'deltas'
    """
    has_interdependencies = False
    # True when backward is only correct for the output layer
    output_only = False

    def __init__(self, forward_formula, backward_formula):
        self.forward_formula = list(forward_formula)
        self.backward_formula = list(backward_formula)

        # Kernel bodies; empty source means there is nothing to dispatch
        self.forward_source = render(self.forward_formula, CUDA)
        self.backward_source = render(self.backward_formula, CUDA)

        self._forward = compile_procedure(
            'activation_forward', ('activated', 'i0', 'i1'),
            self._over_range(self.forward_formula))
        self._backward = compile_procedure(
            'activation_backward', ('activated', 'deltas', 'i0', 'i1'),
            self._over_range(self.backward_formula))

    def _over_range(self, body):
        if self.has_interdependencies or not body:
            return body
        return [For('i', i0, i1, body)]

    def forward(self, buffer, i0, i1):
        """Activate buffer[i0:i1] in place."""
        self._forward(buffer, i0, i1)

    def backward(self, activated, deltas, i0, i1):
        """Scale deltas[i0:i1] by the derivative at activated[i0:i1]."""
        self._backward(activated, deltas, i0, i1)

    def __repr__(self):
        return f"{type(self).__name__}()"


class Identity(Activation):
    """Identity activation: f(x) = x. Both passes are no-ops."""

    def __init__(self):
        super().__init__([], [])


class Sigmoid(Activation):
    """Sigmoid activation: σ(x) = 1 / (1 + e^(-x))"""

    def __init__(self):
        value = var('value')
        super().__init__(
            [
                Store('activated', i, 1.0 / (1.0 + exp(-load('activated', i)))),
            ],
            [
                # σ'(x) = σ(x) * (1 - σ(x))
                Let('value', load('activated', i)),
                Store('deltas', i, value * (1.0 - value), '*='),
            ],
        )


class LeakyReLU(Activation):
    """Leaky ReLU activation: f(x) = x if x > 0 else leak * x"""

    def __init__(self, leak=0.05):
        leak = float(leak)
        assert 0.0 <= leak < 1.0, f"leak must be in [0, 1), got {leak}"
        self.leak = leak
        value = var('value')
        super().__init__(
            [
                Let('value', load('activated', i)),
                Store('activated', i, fmax(value, value * leak)),
            ],
            [
                If(load('activated', i) < 0.0, [
                    Store('deltas', i, leak, '*='),
                ]),
            ],
        )

    def __repr__(self):
        return f"LeakyReLU(leak={self.leak})"


class SoftMax(Activation):
    """
    Softmax over one batch row, with the row maximum subtracted for stability.

    The backward pass is deliberately empty. The delta reaching the output
    layer is (expected - actual); for softmax followed by cross-entropy that
    already is the gradient with respect to the raw sums, so the softmax
    Jacobian must not be applied again. That only holds on the output layer,
    which networks enforce through output_only.
    """
    has_interdependencies = True
    output_only = True

    def __init__(self):
        peak, total, value = var('peak'), var('total'), var('value')
        super().__init__(
            [
                Let('peak', load('activated', i0)),
                For('i', i0 + 1, i1, [
                    Assign('peak', fmax(peak, load('activated', i))),
                ]),
                Let('total', 0.0),
                For('i', i0, i1, [
                    Let('value', exp(load('activated', i) - peak)),
                    Store('activated', i, value),
                    Assign('total', value, '+='),
                ]),
                For('i', i0, i1, [
                    Store('activated', i, total, '/='),
                ]),
            ],
            [],
        )

"""
Network Execution Engine - backend-agnostic predict/learn orchestration

A Network owns five flat float32 buffers sized by its layout:

    inputs     num_inputs  x batch   external input rows
    weights    num_weights           all layers, packed by weight_offset
    activated  num_nodes   x batch   every layer's outputs (and next inputs)
    targets    num_outputs x batch   expected outputs
    deltas     num_nodes   x batch   error signal, reused across layers

Inside a layer's window, data is stored row by row: index = bi * units + unit.
Backends implement the per-layer phases; the order of phases lives here.
"""
import abc
import logging
import math
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class LearningParams:
    """
    Settings for one learn() call.

    Args:
        learning_rate: Step size of the gradient ascent on (expected - actual)
        normalize: Rescale input-side deltas of non-first layers by
            learning_rate / max|delta|
    """
    learning_rate: float = 0.1
    normalize: bool = False


@dataclass(frozen=True)
class LayerWindow:
    """
    Addressing view of one layer inside the shared network buffers.

    Offsets are flat element offsets (already multiplied by the batch size).
    When external_input is set, inputs are read from the network's input
    buffer instead of the activated buffer.
    """
    batch_size: int
    input_offset: int
    output_offset: int
    weight_offset: int
    num_inputs: int
    num_outputs: int
    num_weights: int
    external_input: bool

    def in_index(self, bi, ni):
        assert 0 <= bi < self.batch_size, f"Batch index {bi} out of range [0, {self.batch_size})"
        assert 0 <= ni < self.num_inputs, f"Input index {ni} out of range [0, {self.num_inputs})"
        return bi * self.num_inputs + ni + self.input_offset

    def out_index(self, bi, no):
        assert 0 <= bi < self.batch_size, f"Batch index {bi} out of range [0, {self.batch_size})"
        assert 0 <= no < self.num_outputs, f"Output index {no} out of range [0, {self.num_outputs})"
        return bi * self.num_outputs + no + self.output_offset

    def weight_index(self, index):
        assert 0 <= index < self.num_weights, f"Weight index {index} out of range [0, {self.num_weights})"
        return index + self.weight_offset

    @property
    def input_range(self):
        return self.input_offset, self.input_offset + self.batch_size * self.num_inputs

    @property
    def output_range(self):
        return self.output_offset, self.output_offset + self.batch_size * self.num_outputs


class Network(abc.ABC):
    """
    Execution state of a layout on one backend.

    Args:
        layout: NetworkLayout, frozen by this constructor
        batch_size: Number of rows processed per call
        inputs, weights, activated, targets, deltas: Backend buffers
    """

    def __init__(self, layout, batch_size, inputs, weights, activated, targets, deltas):
        assert layout.layers, "Layout has no layers"
        assert batch_size > 0, f"Batch size must be positive, got {batch_size}"
        for layer in layout.layers[:-1]:
            assert not layer.activation.output_only, (
                f"{layer.activation!r} is only valid on the output layer")
        layout.freeze()

        self.layout = layout
        self.batch_size = batch_size
        self.inputs = inputs
        self.weights = weights
        self.activated = activated
        self.targets = targets
        self.deltas = deltas
        logger.debug("%s: %d layers, %d nodes, %d weights, batch %d",
                     type(self).__name__, len(layout), layout.num_nodes,
                     layout.num_weights, batch_size)

    @property
    def num_inputs(self):
        return self.layout.num_inputs

    @property
    def num_outputs(self):
        return self.layout.num_outputs

    # ------------------------------------------------------------------
    # Backend phases
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def set_input(self, bi, ni, value):
        """Write one input value for batch row bi."""

    @abc.abstractmethod
    def set_target(self, bi, no, value):
        """Write one expected output value for batch row bi."""

    @abc.abstractmethod
    def prepare_inputs(self):
        """Make staged inputs visible to the forward pass."""

    @abc.abstractmethod
    def prepare_targets(self):
        """Make staged targets visible to the evaluation."""

    @abc.abstractmethod
    def clear_deltas(self):
        """Zero the whole delta buffer."""

    @abc.abstractmethod
    def forward_layer(self, layer, window):
        """Output sums plus activation for every batch row of one layer."""

    @abc.abstractmethod
    def evaluate(self, window, needs_error):
        """Write expected - actual into the output deltas; return the RMS error."""

    @abc.abstractmethod
    def backward_layer(self, layer, window, params, gradient):
        """Activation derivative, weight updates and delta propagation of one layer."""

    @abc.abstractmethod
    def set_weights(self, weights):
        """Overwrite all weights; length must equal layout.num_weights."""

    @abc.abstractmethod
    def inspect_weights(self):
        """Copy of the weights as a NumPy array."""

    @abc.abstractmethod
    def inspect_deltas(self):
        """Copy of the deltas as a NumPy array."""

    @abc.abstractmethod
    def inspect_activated(self):
        """Copy of the activated values as a NumPy array."""

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    def bind_layer(self, layer):
        """Build the addressing window of a layer."""
        batch_size = self.batch_size
        window = LayerWindow(
            batch_size=batch_size,
            input_offset=max(layer.input_offset * batch_size, 0),
            output_offset=layer.output_offset * batch_size,
            weight_offset=layer.weight_offset,
            num_inputs=layer.num_inputs,
            num_outputs=layer.num_outputs,
            num_weights=layer.num_weights,
            external_input=layer.input_offset < 0,
        )
        if window.external_input:
            assert window.output_offset == 0, "First layer must write at the start of the buffers"
        else:
            assert window.output_offset == window.input_offset + batch_size * layer.num_inputs, (
                f"Window of {layer!r} is inconsistent: outputs at {window.output_offset}, "
                f"inputs at {window.input_offset}")
        return window

    def predict(self):
        """Run the forward pass; the last layer's outputs end up in activated."""
        self.prepare_inputs()
        for layer in self.layout.layers:
            self.forward_layer(layer, self.bind_layer(layer))

    def learn(self, params, needs_error=False):
        """
        One training step: predict, evaluate, backpropagate, update weights.

        Args:
            params: LearningParams
            needs_error: Whether the caller needs the RMS error. The GPU backend
                only transfers deltas to the host when this is set.

        Returns:
            RMS error over the batch (0.0 when not computed)
        """
        self.predict()
        self.clear_deltas()
        self.prepare_targets()

        layers = self.layout.layers
        error = self.evaluate(self.bind_layer(layers[-1]), needs_error)

        first = layers[0]
        for layer in reversed(layers):
            self.backward_layer(layer, self.bind_layer(layer), params, layer is not first)

        if needs_error:
            logger.debug("learn: lr=%g error=%.6f", params.learning_rate, error)
        return error

    def initialize_weights(self, seed=None):
        """
        Uniform random weights in [-factor/2, factor/2), factor = 2 / sqrt(fan-in),
        drawn independently for every layer.
        """
        rng = np.random.default_rng(seed)
        weights = np.empty(self.layout.num_weights, dtype=np.float32)
        for layer in self.layout.layers:
            factor = 2.0 / math.sqrt(layer.num_inputs_per_node)
            start = layer.weight_offset
            weights[start:start + layer.num_weights] = (rng.random(layer.num_weights) - 0.5) * factor
        self.set_weights(weights)

    def inspect_outputs(self):
        """Last layer's activated values as a (batch, num_outputs) array."""
        window = self.bind_layer(self.layout.layers[-1])
        start, stop = window.output_range
        return self.inspect_activated()[start:stop].reshape(self.batch_size, window.num_outputs)

    def _check_weights(self, weights):
        weights = np.asarray(weights, dtype=np.float32).ravel()
        assert weights.size == self.layout.num_weights, (
            f"Expected {self.layout.num_weights} weights, got {weights.size}")
        return weights

    def _check_input(self, bi, ni):
        assert 0 <= bi < self.batch_size, f"Batch index {bi} out of range [0, {self.batch_size})"
        assert 0 <= ni < self.num_inputs, f"Input index {ni} out of range [0, {self.num_inputs})"
        return bi * self.num_inputs + ni

    def _check_target(self, bi, no):
        assert 0 <= bi < self.batch_size, f"Batch index {bi} out of range [0, {self.batch_size})"
        assert 0 <= no < self.num_outputs, f"Output index {no} out of range [0, {self.num_outputs})"
        return bi * self.num_outputs + no

    def __repr__(self):
        return f"{type(self).__name__}(batch_size={self.batch_size}, layout={self.layout!r})"

"""
Network Layout - an ordered chain of layers in one flat address space
"""


class NetworkLayout:
    """
    Ordered list of layers with running node and weight totals.

    Node indices: layer k writes its outputs right after the outputs of layer
    k-1, so the outputs of one layer are the inputs of the next. Weight indices
    are packed the same way. The first layer reads from the external input
    buffer, which is why its input_offset is negative.
    """

    def __init__(self):
        self.layers = []
        self.num_nodes = 0
        self.num_weights = 0
        self.frozen = False

    @property
    def num_inputs(self):
        return self.layers[0].num_inputs if self.layers else 0

    @property
    def num_outputs(self):
        return self.layers[-1].num_outputs if self.layers else 0

    def add_layer(self, layer):
        """Append a layer; its inputs must match the previous layer's outputs."""
        assert not self.frozen, "Layout is in use by a network and can no longer change"
        if self.layers:
            prev_size = self.layers[-1].num_outputs
            assert prev_size == layer.num_inputs, (
                f"Layer expects {layer.num_inputs} inputs, previous layer has {prev_size} outputs")

        layer.assign_offsets(
            input_offset=self.num_nodes - layer.num_inputs,
            output_offset=self.num_nodes,
            weight_offset=self.num_weights,
        )
        self.num_nodes += layer.num_outputs
        self.num_weights += layer.num_weights
        self.layers.append(layer)
        return layer

    def freeze(self):
        self.frozen = True

    def __len__(self):
        return len(self.layers)

    def __repr__(self):
        parts = [f"@({layer.input_offset}->{layer.output_offset} W{layer.weight_offset})"
                 for layer in self.layers]
        return f"NetworkLayout(nodes={self.num_nodes}, weights={self.num_weights}, layers={parts})"

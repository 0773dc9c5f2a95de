"""
dualnet - one network definition, two interchangeable backends

A scalar reference backend (NumPy buffers, nested loops) and a parallel CUDA
backend (CuPy RawKernels) run the same layer formulas over the same flat
buffers, so they produce the same activations and weight updates.

Requirements (GPU backend only):
    pip install cupy-cuda11x  # For CUDA 11.x
    # or
    pip install cupy-cuda12x  # For CUDA 12.x

Usage:
    from dualnet import NetworkLayout, FullyConnected, Sigmoid, Identity
    from dualnet import LearningParams, create_network

    layout = NetworkLayout()
    layout.add_layer(FullyConnected(3, 8, Sigmoid()))
    layout.add_layer(FullyConnected(8, 1, Identity()))

    network = create_network(layout, batch_size=16, backend='cpu')
    network.initialize_weights(seed=42)
    network.set_input(0, 0, 0.5)
    network.set_target(0, 0, 1.0)
    error = network.learn(LearningParams(learning_rate=0.01), needs_error=True)
"""

from .activations import Activation, Identity, Sigmoid, LeakyReLU, SoftMax
from .base import Layer
from .dense import FullyConnected
from .conv import Conv1d, Conv2d
from .layout import NetworkLayout
from .network import Network, LearningParams, LayerWindow
from .cpu_network import CPUNetwork
from .backends import create_network, cuda_available


__all__ = [
    # Activations
    'Activation', 'Identity', 'Sigmoid', 'LeakyReLU', 'SoftMax',
    # Layers
    'Layer', 'FullyConnected', 'Conv1d', 'Conv2d',
    # Layout
    'NetworkLayout',
    # Networks
    'Network', 'LearningParams', 'LayerWindow', 'CPUNetwork',
    'create_network', 'cuda_available',
]

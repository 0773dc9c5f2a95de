"""
Frequency Detector Training Script - CPU or CUDA backend

Trains a small conv + dense network to recover the phase of a sine wave,
reporting cos(phase) and sin(phase). Runs unchanged on either backend.
"""
import os
import time
import argparse

import numpy as np
from tqdm import tqdm

from dualnet import (
    Conv2d, FullyConnected, Identity, LearningParams, NetworkLayout, Sigmoid,
    create_network,
)

# =============================================================================
# CONFIGURATION
# =============================================================================

DEFAULT_CONFIG = {
    'backend': 'cpu',
    'series_length': 64,
    'frequency': 0.1,
    'attributes': 5,
    'kernel_size': 7,
    'hidden': 10,
    'batch_size': 8,
    'steps': 500,
    'lr': 1.0,
    'normalize': False,
    'seed': 1543,
    'save_dir': 'checkpoints',
}


def build_layout(config):
    """Two unpadded convolutions along the series, then two dense layers."""
    length = config['series_length']
    kernel = config['kernel_size']
    attrs = config['attributes']

    layout = NetworkLayout()
    layout.add_layer(Conv2d((length, 1), 1, (kernel, 1), False, attrs, Sigmoid()))
    length -= kernel - 1
    layout.add_layer(Conv2d((length, 1), attrs, (kernel, 1), False, attrs, Sigmoid()))
    length -= kernel - 1
    layout.add_layer(FullyConnected(length * attrs, config['hidden'], Sigmoid()))
    layout.add_layer(FullyConnected(config['hidden'], 2, Identity()))
    return layout


def fill_batch(network, rng, config):
    """Random phases; inputs are the sampled sine, targets its phase vector."""
    positions = np.arange(config['series_length'])
    for bi in range(network.batch_size):
        phase = rng.random() * 2.0 * np.pi
        network.set_target(bi, 0, np.cos(phase))
        network.set_target(bi, 1, np.sin(phase))
        signal = np.sin(phase + positions * config['frequency'])
        for ni, value in enumerate(signal):
            network.set_input(bi, ni, value)


# =============================================================================
# TRAINING
# =============================================================================

def train(config):
    print("=" * 60)
    print(f"Frequency Detector Training ({config['backend'].upper()})")
    print("=" * 60)

    layout = build_layout(config)
    network = create_network(layout, config['batch_size'], config['backend'])
    network.initialize_weights(config['seed'])
    print(f"Layers: {len(layout)}, Nodes: {layout.num_nodes:,}, Weights: {layout.num_weights:,}")

    rng = np.random.default_rng(config['seed'])
    params = LearningParams(config['lr'] / config['batch_size'], config['normalize'])
    report_every = max(1, config['steps'] // 10)

    start = time.time()
    error = float('nan')
    pbar = tqdm(range(config['steps']), desc="Training")
    for step in pbar:
        fill_batch(network, rng, config)
        needs_error = step % report_every == 0 or step == config['steps'] - 1
        if needs_error:
            error = network.learn(params, needs_error=True)
            pbar.set_postfix({'error': f'{error:.4f}'})
        else:
            network.learn(params)

    print(f"Done. Final Error: {error:.4f}, Time: {time.time() - start:.1f}s")
    save_weights(network, config['save_dir'], f"frequency_detector_{config['backend']}.npz")
    return error


def save_weights(network, save_dir, filename):
    os.makedirs(save_dir, exist_ok=True)
    save_path = os.path.join(save_dir, filename)
    weights = {}
    flat = network.inspect_weights()
    for i, layer in enumerate(network.layout.layers):
        weights[f'layer_{i}_W'] = flat[layer.weight_offset:layer.weight_offset + layer.num_weights]
    np.savez(save_path, **weights)
    print(f"Saved weights to {save_path}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument('--backend', type=str, default=DEFAULT_CONFIG['backend'], choices=['cpu', 'cuda'])
    parser.add_argument('--steps', type=int, default=DEFAULT_CONFIG['steps'])
    parser.add_argument('--batch_size', type=int, default=DEFAULT_CONFIG['batch_size'])
    parser.add_argument('--lr', type=float, default=DEFAULT_CONFIG['lr'])
    parser.add_argument('--normalize', action='store_true')
    parser.add_argument('--seed', type=int, default=DEFAULT_CONFIG['seed'])
    parser.add_argument('--save_dir', type=str, default=DEFAULT_CONFIG['save_dir'])
    args = parser.parse_args()

    config = dict(DEFAULT_CONFIG)
    config.update(vars(args))
    train(config)

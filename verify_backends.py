import numpy as np
from dualnet import (
    Conv1d, Conv2d, FullyConnected, Identity, LeakyReLU, LearningParams,
    NetworkLayout, Sigmoid, SoftMax, create_network, cuda_available,
)


def build_layout():
    layout = NetworkLayout()
    layout.add_layer(Conv2d((6, 6), 1, 3, True, 2, LeakyReLU()))
    layout.add_layer(Conv1d(72, 1, 5, False, 1, Sigmoid()))
    layout.add_layer(FullyConnected(68, 8, Identity()))
    layout.add_layer(FullyConnected(8, 4, SoftMax()))
    return layout


def fill(network, rng):
    for bi in range(network.batch_size):
        for ni in range(network.num_inputs):
            network.set_input(bi, ni, rng.standard_normal())
        label = rng.integers(network.num_outputs)
        for no in range(network.num_outputs):
            network.set_target(bi, no, 1.0 if no == label else 0.0)


def run(backend, weights, steps=3):
    network = create_network(build_layout(), 4, backend)
    network.set_weights(weights)
    rng = np.random.default_rng(7)
    params = LearningParams(0.05, normalize=True)
    errors = []
    for _ in range(steps):
        fill(network, rng)
        errors.append(network.learn(params, needs_error=True))
    return network, errors


def test_predict():
    print("Testing predict on both backends...")
    cpu = create_network(build_layout(), 4, 'cpu')
    cpu.initialize_weights(seed=3)
    gpu = create_network(build_layout(), 4, 'cuda')
    gpu.set_weights(cpu.inspect_weights())

    rng = np.random.default_rng(11)
    for bi in range(4):
        for ni in range(cpu.num_inputs):
            value = rng.standard_normal()
            cpu.set_input(bi, ni, value)
            gpu.set_input(bi, ni, value)
    cpu.predict()
    gpu.predict()

    out_cpu = cpu.inspect_outputs()
    out_gpu = gpu.inspect_outputs()
    print(f"Output shape: {out_cpu.shape} (Expected: (4, 4))")
    print(f"Max difference: {np.abs(out_cpu - out_gpu).max():.2e}")
    assert np.allclose(out_cpu, out_gpu, rtol=1e-4, atol=1e-6)
    assert np.allclose(out_cpu.sum(axis=1), 1.0, atol=1e-5)
    print("Predict Passed!\n")


def test_learn():
    print("Testing learn on both backends...")
    seed_net = create_network(build_layout(), 4, 'cpu')
    seed_net.initialize_weights(seed=5)
    weights = seed_net.inspect_weights()

    cpu, cpu_errors = run('cpu', weights)
    gpu, gpu_errors = run('cuda', weights)
    print(f"CPU errors: {np.round(cpu_errors, 5)}")
    print(f"GPU errors: {np.round(gpu_errors, 5)}")
    assert np.allclose(cpu_errors, gpu_errors, rtol=1e-4, atol=1e-6)
    assert np.allclose(cpu.inspect_weights(), gpu.inspect_weights(), rtol=1e-4, atol=1e-6)
    print("Learn Passed!\n")


if __name__ == "__main__":
    if not cuda_available():
        print("No CUDA device found, nothing to compare.")
    else:
        test_predict()
        test_learn()

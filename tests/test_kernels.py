from dualnet import Conv2d, FullyConnected, Identity, Sigmoid, SoftMax
from dualnet.kernels import (
    ActivationKey, BackwardKey, EvalKey, ForwardKey,
    activation_kernel_source, backward_kernel_source, block_1d, block_2d,
    clear_kernel_source, eval_kernel_source, forward_kernel_source, grid_for,
)


def test_forward_source_bakes_shape():
    layer = FullyConnected(3, 2, Sigmoid())
    assert "get_weight(((no * 3) + ni))" in layer.forward_source

    source = forward_kernel_source(ForwardKey(4, layer.num_outputs, layer.forward_source))
    assert 'extern "C" __global__ void forward(' in source
    assert "if (bi >= 4 || no >= num_outputs) return;" in source
    assert layer.forward_source.splitlines()[0].strip() in source
    assert "atomicAdd" not in source


def test_backward_source_scatters_atomically():
    layer = FullyConnected(3, 2, Sigmoid())
    source = backward_kernel_source(BackwardKey(4, layer.num_weights, layer.backward_source))
    assert "const int batch_size = 4;" in source
    assert "if (weight_index >= 6) return;" in source
    assert "atomicAdd(&deltas[" in source
    assert "if (gradient) {" in source
    # host-side finiteness checks never reach device code
    assert "isfinite" not in source


def test_padding_only_clamps_when_enabled():
    padded = Conv2d(5, 1, 3, True, 1, Identity())
    unpadded = Conv2d(5, 1, 3, False, 1, Identity())
    assert "clamp_index" in padded.forward_source
    assert "clamp_index" in padded.backward_source
    assert "clamp_index" not in unpadded.forward_source
    assert "clamp_index" not in unpadded.backward_source


def test_layers_with_same_shape_share_source():
    assert FullyConnected(3, 2, Sigmoid()).forward_source == FullyConnected(3, 2, Identity()).forward_source
    assert FullyConnected(3, 2, Sigmoid()).forward_source != FullyConnected(4, 2, Sigmoid()).forward_source


def test_activation_kernels():
    sigmoid = Sigmoid()
    elementwise = activation_kernel_source(
        ActivationKey(8, 3, sigmoid.forward_source, False), inverse=False)
    assert "int i = bi * 3 + no + curr_output_offset;" in elementwise
    assert "void activation_forward(float* activated" in elementwise

    softmax = SoftMax()
    per_row = activation_kernel_source(
        ActivationKey(8, 3, softmax.forward_source, True), inverse=False)
    assert "int i0 = bi * 3 + curr_output_offset;" in per_row
    assert "int i1 = i0 + 3;" in per_row

    inverse = activation_kernel_source(
        ActivationKey(8, 3, sigmoid.backward_source, False), inverse=True)
    assert "void activation_backward(const float* activated, float* deltas" in inverse


def test_eval_and_clear_kernels():
    source = eval_kernel_source(EvalKey(2, 5))
    assert "if (bi >= 2 || no >= 5) return;" in source
    assert "expected[index] - actual[index + curr_output_offset]" in source
    assert "values[index] = 0.0f;" in clear_kernel_source()


def test_launch_sizing():
    assert block_1d(10) == (10, 1, 1)
    assert block_1d(5000) == (256, 1, 1)
    assert block_1d(0) == (1, 1, 1)
    assert block_2d(8, 100) == (8, 100, 1)
    assert block_2d(1000, 5) == (256, 4, 1)
    assert block_2d(1, 5000) == (1, 1024, 1)
    assert grid_for((256, 4, 1), 1000, 5) == (4, 2, 1)
    assert grid_for((10, 1, 1), 10) == (1, 1, 1)

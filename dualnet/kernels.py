"""
CUDA Kernel Sources - templates around the layer and activation formulas

Every kernel is specialized: batch size and unit counts are baked in as
literals next to the formula body, so one compiled kernel exists per distinct
key. Offsets and unit counts of the bound window are passed as arguments.

Buffer accessors are macros over the kernel arguments, mirroring the
CPUKernelContext methods used by the scalar backend.
"""
from dataclasses import dataclass

MAX_BLOCK_X = 256
MAX_THREADS_PER_BLOCK = 1024


@dataclass(frozen=True)
class ForwardKey:
    batch_size: int
    num_outputs: int
    source: str


@dataclass(frozen=True)
class BackwardKey:
    batch_size: int
    num_weights: int
    source: str


@dataclass(frozen=True)
class ActivationKey:
    batch_size: int
    num_outputs: int
    source: str
    has_interdependencies: bool


@dataclass(frozen=True)
class EvalKey:
    batch_size: int
    num_outputs: int


@dataclass(frozen=True)
class ClearKey:
    pass


# =============================================================================
# LAUNCH SIZING
# =============================================================================

def _ceil_div(a, b):
    return -(-a // b)


def block_1d(x):
    return (max(1, min(x, MAX_BLOCK_X)), 1, 1)


def block_2d(x, y):
    bx = max(1, min(x, MAX_BLOCK_X))
    by = max(1, min(MAX_THREADS_PER_BLOCK // bx, y))
    return (bx, by, 1)


def grid_for(block, x, y=1):
    return (_ceil_div(x, block[0]), _ceil_div(y, block[1]), 1)


# =============================================================================
# SOURCES
# =============================================================================

CLAMP_INDEX = """\
__device__ __forceinline__ int clamp_index(int value, int low, int high) {
    return value < low ? low : (value > high ? high : value);
}
"""

WINDOW_PARAMS = (
    "int curr_input_offset, int curr_output_offset, int curr_weight_offset, "
    "int num_inputs, int num_outputs"
)

GET_WEIGHT = "#define get_weight(w) weights[(w) + curr_weight_offset]\n"
SET_WEIGHT = "#define set_weight(w, v) (weights[(w) + curr_weight_offset] = (v))\n"
GET_INPUT = "#define get_input(bi, ni) inputs[(bi) * num_inputs + (ni) + curr_input_offset]\n"
GET_OUT_DELTA = "#define get_out_delta(bi, no) deltas[(bi) * num_outputs + (no) + curr_output_offset]\n"
# several weights scatter into the same input delta
ADD_IN_DELTA = ("#define add_in_delta(bi, ni, v) "
                "atomicAdd(&deltas[(bi) * num_inputs + (ni) + curr_input_offset], (v))\n")
SET_OUT_SUM = ("#define set_out_sum(bi, no, v) "
               "(activated[(bi) * num_outputs + (no) + curr_output_offset] = (v))\n")


def _indent(body, depth=1):
    pad = '    ' * depth
    return ''.join(pad + line + '\n' if line else '\n' for line in body.splitlines())


def forward_kernel_source(key):
    """One invocation per (batch row, output unit)."""
    return (
        CLAMP_INDEX
        + GET_WEIGHT + GET_INPUT + SET_OUT_SUM
        + 'extern "C" __global__ void forward(\n'
        + "        const float* weights, const float* inputs, float* activated,\n"
        + f"        {WINDOW_PARAMS}) {{\n"
        + "    int bi = blockIdx.x * blockDim.x + threadIdx.x;\n"
        + "    int no = blockIdx.y * blockDim.y + threadIdx.y;\n"
        + f"    if (bi >= {key.batch_size} || no >= num_outputs) return;\n"
        + _indent(key.source)
        + "}\n"
    )


def backward_kernel_source(key):
    """One invocation per weight; input deltas are accumulated atomically."""
    return (
        CLAMP_INDEX
        + GET_WEIGHT + SET_WEIGHT + GET_INPUT + GET_OUT_DELTA + ADD_IN_DELTA
        + 'extern "C" __global__ void backward(\n'
        + "        float* weights, const float* inputs, float* deltas,\n"
        + f"        {WINDOW_PARAMS},\n"
        + "        float learning_rate, int gradient) {\n"
        + "    int weight_index = blockIdx.x * blockDim.x + threadIdx.x;\n"
        + f"    if (weight_index >= {key.num_weights}) return;\n"
        + f"    const int batch_size = {key.batch_size};\n"
        + _indent(key.source)
        + "}\n"
    )


def activation_kernel_source(key, inverse):
    """
    Forward activation (inverse=False) or activation derivative (inverse=True).

    Independent activations run one invocation per element 'i'. Interdependent
    ones run one invocation per batch row and see the row as [i0, i1).
    """
    if inverse:
        name = 'activation_backward'
        params = "const float* activated, float* deltas, int curr_output_offset"
    else:
        name = 'activation_forward'
        params = "float* activated, int curr_output_offset"

    if key.has_interdependencies:
        header = (
            "    int bi = blockIdx.x * blockDim.x + threadIdx.x;\n"
            f"    if (bi >= {key.batch_size}) return;\n"
            f"    int i0 = bi * {key.num_outputs} + curr_output_offset;\n"
            f"    int i1 = i0 + {key.num_outputs};\n"
        )
    else:
        header = (
            "    int bi = blockIdx.x * blockDim.x + threadIdx.x;\n"
            "    int no = blockIdx.y * blockDim.y + threadIdx.y;\n"
            f"    if (bi >= {key.batch_size} || no >= {key.num_outputs}) return;\n"
            f"    int i = bi * {key.num_outputs} + no + curr_output_offset;\n"
        )
    return (
        f'extern "C" __global__ void {name}({params}) {{\n'
        + header
        + _indent(key.source)
        + "}\n"
    )


def eval_kernel_source(key):
    """deltas = expected - actual over the output window."""
    return (
        'extern "C" __global__ void evaluate(\n'
        "        const float* expected, const float* actual, float* deltas, int curr_output_offset) {\n"
        "    int bi = blockIdx.x * blockDim.x + threadIdx.x;\n"
        "    int no = blockIdx.y * blockDim.y + threadIdx.y;\n"
        f"    if (bi >= {key.batch_size} || no >= {key.num_outputs}) return;\n"
        f"    int index = bi * {key.num_outputs} + no;\n"
        "    deltas[index + curr_output_offset] = expected[index] - actual[index + curr_output_offset];\n"
        "}\n"
    )


def clear_kernel_source(key=None):
    return (
        'extern "C" __global__ void clear(float* values, int buffer_size) {\n'
        "    int index = blockIdx.x * blockDim.x + threadIdx.x;\n"
        "    if (index >= buffer_size) return;\n"
        "    values[index] = 0.0f;\n"
        "}\n"
    )

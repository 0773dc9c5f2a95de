"""
Backend selection
"""
import importlib.util

from .cpu_network import CPUNetwork

BACKENDS = ('cpu', 'cuda')


def cuda_available():
    """True when CuPy is installed and sees at least one CUDA device."""
    if importlib.util.find_spec('cupy') is None:
        return False
    import cupy as cp
    try:
        return cp.cuda.runtime.getDeviceCount() > 0
    except cp.cuda.runtime.CUDARuntimeError:
        return False


def create_network(layout, batch_size, backend='cpu'):
    """
    Build a network for a layout on the named backend.

    Args:
        layout: NetworkLayout
        batch_size: Number of rows processed per call
        backend: 'cpu' (scalar reference) or 'cuda' (CuPy kernels)
    """
    if backend == 'cpu':
        return CPUNetwork(layout, batch_size)
    if backend == 'cuda':
        from .cupy_network import GPUNetwork
        return GPUNetwork(layout, batch_size)
    raise ValueError(f"Unknown backend {backend!r}, expected one of {BACKENDS}")

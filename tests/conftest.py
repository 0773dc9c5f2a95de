import pytest

from dualnet import create_network, cuda_available

requires_cuda = pytest.mark.skipif(not cuda_available(), reason="CUDA device not available")


@pytest.fixture(params=["cpu", pytest.param("cuda", marks=requires_cuda)])
def backend(request):
    return request.param


@pytest.fixture
def make_network(backend):
    """Build a network for a layout on the parametrized backend."""
    def build(layout, batch_size=1):
        return create_network(layout, batch_size, backend)
    return build

"""
Kernel Cache - compile once per key, keep for the process lifetime
"""
import logging

logger = logging.getLogger(__name__)


class KernelCache:
    """
    Lazy map from a hashable key to a compiled kernel.

    The factory runs the first time a key is requested; later lookups return
    the same object. Entries are never evicted.

    Args:
        factory: Callable building the kernel for a key
        name: Label used in log messages
    """

    def __init__(self, factory, name='kernel'):
        self.factory = factory
        self.name = name
        self.entries = {}

    def __getitem__(self, key):
        kernel = self.entries.get(key)
        if kernel is None:
            logger.debug("Compiling %s kernel for %s", self.name, type(key).__name__)
            kernel = self.factory(key)
            self.entries[key] = kernel
        return kernel

    def __contains__(self, key):
        return key in self.entries

    def __len__(self):
        return len(self.entries)

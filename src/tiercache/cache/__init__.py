"""Two-tier response caching for tiercache.

This package provides :class:`VolatileCache` (bounded, in-process, FIFO
eviction), :class:`PersistentCache` (durable, backed by :mod:`diskcache`)
and :class:`CacheFacade`, which presents both behind one
``get``/``set``/``delete``/``clear`` contract with promotion from the
persistent tier into memory. :func:`create_cache` builds the three from a
:class:`~tiercache.models.CacheConfig`.
"""

from tiercache.cache.entry import CacheEntry
from tiercache.cache.facade import CacheFacade, create_cache
from tiercache.cache.persistent import PersistentCache
from tiercache.cache.volatile import VolatileCache

__all__ = [
    "CacheEntry",
    "CacheFacade",
    "PersistentCache",
    "VolatileCache",
    "create_cache",
]

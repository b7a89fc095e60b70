"""In-process cache tier with per-entry TTL and FIFO eviction."""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Iterator, Optional

from tiercache.cache.entry import CacheEntry
from tiercache.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


class VolatileCache:
    """Bounded, insertion-ordered key/value store.

    When full, inserting a new key evicts the single oldest-inserted entry
    (FIFO, not LRU: reads never reorder). Overwriting a key that is already
    present keeps its original position in the eviction order. Expiry is
    lazy: ``get`` drops an entry it finds past its ``expires_at``; nothing
    sweeps in the background.

    Args:
        max_entries: Capacity before eviction.
        clock: Source of "now". Defaults to :class:`~tiercache.clock.SystemClock`.
        default_ttl: TTL in seconds used when ``set`` is called without one.
    """

    def __init__(
        self,
        max_entries: int = 50,
        clock: Optional[Clock] = None,
        default_ttl: float = 300.0,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self._clock = clock or SystemClock()
        self._store: OrderedDict[str, CacheEntry] = OrderedDict()

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store *value* under *key* for *ttl* seconds."""
        if key not in self._store and len(self._store) >= self.max_entries:
            evicted, _ = self._store.popitem(last=False)
            logger.debug("Volatile tier full, evicted %r", evicted)

        ttl = self.default_ttl if ttl is None else ttl
        # Assigning to an existing key keeps its position in the OrderedDict.
        self._store[key] = CacheEntry.create(value, ttl, self._clock.now())

    def get(self, key: str, default: Any = None) -> Any:
        """Return the live value for *key*, or *default* if absent or expired."""
        entry = self._store.get(key)
        if entry is None:
            return default
        if entry.is_expired(self._clock.now()):
            del self._store[key]
            return default
        return entry.value

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        entry = self._store.get(key)
        return entry is not None and not entry.is_expired(self._clock.now())

    def delete(self, key: str) -> bool:
        """Remove *key*. Returns True if it was present."""
        return self._store.pop(key, None) is not None

    def clear(self) -> None:
        """Remove all entries."""
        self._store.clear()

    def keys(self) -> list[str]:
        """Snapshot of stored keys in eviction order (oldest first)."""
        return list(self._store)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self._store)

    def size(self) -> int:
        """Number of stored entries, including ones not yet found expired."""
        return len(self._store)

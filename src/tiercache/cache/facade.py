"""One get/set/delete/clear contract over both cache tiers.

Reads go volatile first, then persistent; a persistent hit is promoted
into the volatile tier before it is returned. Writes always land in the
volatile tier and, unless told otherwise, in the persistent tier too.

Keys are derived from ``(namespace, params)`` by :meth:`CacheFacade.generate_key`
so that call sites building the same parameters in a different order
still share an entry, and so that :meth:`CacheFacade.invalidate_pattern`
can drop a whole namespace by substring.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping, Optional

from tiercache.cache.persistent import PersistentCache
from tiercache.cache.volatile import VolatileCache
from tiercache.clock import Clock, SystemClock
from tiercache.models import CacheCategory, CacheConfig

if TYPE_CHECKING:
    from tiercache.metrics.collector import MetricsCollector

logger = logging.getLogger(__name__)

_MISSING = object()


class CacheFacade:
    """Two-tier cache facade.

    Args:
        volatile: The in-process tier.
        persistent: The durable tier, or ``None`` for memory-only caching.
        config: Cache configuration (TTL table, persistence switch).
        metrics: Optional collector; :meth:`get_or_fetch` reports cache
            hits and misses to it.

    Example::

        cache = create_cache("/tmp/store")
        key = cache.generate_key("products", {"page": 1, "brand": "acme"})
        if (data := cache.get(key)) is None:
            data = load_products()
            cache.set(key, data, cache.ttl_for(CacheCategory.PRODUCTS))
    """

    def __init__(
        self,
        volatile: VolatileCache,
        persistent: Optional[PersistentCache] = None,
        config: Optional[CacheConfig] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self._config = config or CacheConfig()
        self.volatile = volatile
        self.persistent = persistent
        self._metrics = metrics

    @property
    def config(self) -> CacheConfig:
        return self._config

    def ttl_for(self, category: CacheCategory | str | None) -> float:
        """Default TTL in seconds for a data category."""
        return self._config.ttl_for(category)

    # ------------------------------------------------------------------ #
    # Core contract
    # ------------------------------------------------------------------ #

    def get(self, key: str, allow_persistent: bool = True, default: Any = None) -> Any:
        """Look *key* up in the volatile tier, then the persistent tier.

        A persistent hit is written into the volatile tier with the
        promotion TTL (``config.default_ttl_seconds``) before returning,
        so the next ``get`` is served from memory.

        Returns:
            The cached value, or *default* on a miss in every tier tried.
        """
        value = self.volatile.get(key, _MISSING)
        if value is not _MISSING:
            return value

        if allow_persistent and self.persistent is not None:
            value = self.persistent.get(key, _MISSING)
            if value is not _MISSING:
                self.volatile.set(key, value, self._config.default_ttl_seconds)
                logger.debug("Promoted %r to the volatile tier", key)
                return value

        return default

    def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
        persist: bool = True,
    ) -> None:
        """Store *value* in the volatile tier and, if *persist*, the persistent tier.

        Args:
            key: Cache key, typically from :meth:`generate_key`.
            value: Value to cache. Must be JSON-serialisable to persist.
            ttl: Seconds to live. ``None`` uses ``config.default_ttl_seconds``.
            persist: Also write to the persistent tier. When false, any
                persisted record for *key* is dropped instead, so an older
                value cannot be promoted back later.
        """
        ttl = self._config.default_ttl_seconds if ttl is None else ttl
        self.volatile.set(key, value, ttl)
        if persist and self._persistence_enabled():
            assert self.persistent is not None
            self.persistent.set(key, value, ttl)
        elif self.persistent is not None:
            self.persistent.delete(key)

    def delete(self, key: str) -> None:
        """Remove *key* from both tiers."""
        self.volatile.delete(key)
        if self.persistent is not None:
            self.persistent.delete(key)

    def clear(self) -> None:
        """Empty both tiers."""
        self.volatile.clear()
        if self.persistent is not None:
            self.persistent.clear()

    @staticmethod
    def generate_key(namespace: str, params: Optional[Mapping[str, Any]] = None) -> str:
        """Derive a canonical cache key from a namespace and parameters.

        Parameter names are sorted (recursively, for nested mappings) and
        serialised compactly, so equal mappings give equal keys whatever
        order they were built in.

        Example::

            >>> CacheFacade.generate_key("products", {"page": 2, "brand": "acme"})
            'products_{"brand":"acme","page":2}'
        """
        canonical = json.dumps(
            dict(params or {}),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            default=str,
        )
        return f"{namespace}_{canonical}"

    def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key in either tier whose text contains *pattern*.

        A linear scan over both tiers; the capacity limits bound its cost.

        Returns:
            The number of distinct keys removed.
        """
        removed: set[str] = set()
        for key in self.volatile.keys():
            if pattern in key:
                self.volatile.delete(key)
                removed.add(key)
        if self.persistent is not None:
            for key in self.persistent.keys():
                if pattern in key:
                    self.persistent.delete(key)
                    removed.add(key)
        if removed:
            logger.debug("Invalidated %d keys matching %r", len(removed), pattern)
        return len(removed)

    # ------------------------------------------------------------------ #
    # Convenience helpers
    # ------------------------------------------------------------------ #

    def cache_api_response(
        self,
        endpoint: str,
        params: Optional[Mapping[str, Any]],
        data: Any,
        ttl: Optional[float] = None,
    ) -> str:
        """Store an API response under its generated key and return the key."""
        key = self.generate_key(endpoint, params)
        self.set(key, data, ttl)
        return key

    def get_cached_api_response(
        self, endpoint: str, params: Optional[Mapping[str, Any]] = None
    ) -> Any:
        """Return the cached response for ``(endpoint, params)``, or ``None``."""
        return self.get(self.generate_key(endpoint, params))

    async def get_or_fetch(
        self,
        namespace: str,
        params: Optional[Mapping[str, Any]],
        fetch: Callable[[], Awaitable[Any]],
        category: CacheCategory | str | None = None,
        persist: bool = True,
    ) -> Any:
        """Read through the cache, calling *fetch* only on a total miss.

        The fetched value is stored with the TTL of *category*. ``None``
        results are returned but not cached. When a metrics collector is
        attached, one ``cache`` record per lookup is reported under
        *namespace*.
        """
        key = self.generate_key(namespace, params)
        value = self.get(key, default=_MISSING)
        hit = value is not _MISSING
        if self._metrics is not None:
            self._metrics.track_cache(namespace, "get", hit)
        if hit:
            return value

        value = await fetch()
        if value is not None:
            self.set(key, value, self.ttl_for(category), persist=persist)
        return value

    def get_stats(self) -> dict[str, Any]:
        """Sizes of both tiers plus the effective configuration."""
        storage = self.persistent.stats() if self.persistent is not None else None
        return {
            "memory_size": self.volatile.size(),
            "storage_size": storage["size"] if storage else 0,
            "storage": storage,
            "config": self._config.model_dump(mode="json"),
        }

    def close(self) -> None:
        """Release the persistent tier's store."""
        if self.persistent is not None:
            self.persistent.close()

    def _persistence_enabled(self) -> bool:
        return (
            self._config.enabled_persistent
            and self.persistent is not None
            and self.persistent.available
        )


def create_cache(
    store_dir: Optional[str | Path] = None,
    config: Optional[CacheConfig] = None,
    clock: Optional[Clock] = None,
    metrics: Optional[MetricsCollector] = None,
) -> CacheFacade:
    """Build a :class:`CacheFacade` and both tiers from configuration.

    Args:
        store_dir: Directory for the persistent tier. ``None`` (or
            ``config.enabled_persistent`` being false) gives a
            memory-only cache.
        config: Cache configuration; defaults to :class:`CacheConfig`.
        clock: Shared time source for both tiers.
        metrics: Optional collector passed to the facade.
    """
    config = config or CacheConfig()
    clock = clock or SystemClock()
    volatile = VolatileCache(
        max_entries=config.max_memory_entries,
        clock=clock,
        default_ttl=config.default_ttl_seconds,
    )
    persistent: Optional[PersistentCache] = None
    if store_dir is not None and config.enabled_persistent:
        persistent = PersistentCache(
            store_dir,
            prefix=config.storage_prefix,
            max_entries=config.max_storage_entries,
            clock=clock,
            default_ttl=config.default_ttl_seconds,
        )
    return CacheFacade(volatile, persistent, config=config, metrics=metrics)

"""Durable cache tier backed by :mod:`diskcache`.

Entries are stored as JSON strings (``{"value", "expires_at",
"written_at"}``) under ``prefix + key`` in a :class:`diskcache.Cache`
directory, so they survive a process restart and never collide with
unrelated data sharing the same store.

Persistence is an optimisation, not a correctness requirement. Every
storage-layer error is caught here, logged, and turned into a miss or a
no-op; callers of this tier never see one.

See Also:
    :class:`~tiercache.cache.facade.CacheFacade` -- promotes hits from this
    tier into the volatile tier.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any, Optional

import diskcache

from tiercache.cache.entry import CacheEntry, DecodeError
from tiercache.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

STORAGE_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    sqlite3.Error,
    diskcache.Timeout,
)
"""Exceptions that mean the durable store is unusable right now."""


class PersistentCache:
    """TTL cache tier on top of a durable key/value store.

    Every successful ``set`` is followed by :meth:`cleanup`, which sweeps
    expired or undecodable records and then trims the oldest survivors
    until at most ``max_entries`` remain. The sweep cost is therefore
    spread over writes instead of needing a timer.

    Args:
        directory: Directory for the :class:`diskcache.Cache`. Ignored when
            *store* is given.
        store: An already-open :class:`diskcache.Cache` (or compatible
            mapping with ``get``/``set``/``delete``/iteration).
        prefix: Namespace prefix applied to every persisted key.
        max_entries: Hard cap on the number of persisted entries.
        clock: Source of "now". Defaults to :class:`~tiercache.clock.SystemClock`.
        default_ttl: TTL in seconds used when ``set`` is called without one.

    Example::

        tier = PersistentCache("/tmp/tiercache-store", max_entries=100)
        tier.set("categories_{}", [{"name": "Brakes"}], ttl=1800)
        tier.get("categories_{}")
    """

    def __init__(
        self,
        directory: Optional[str | Path] = None,
        *,
        store: Any = None,
        prefix: str = "tiercache_",
        max_entries: int = 100,
        clock: Optional[Clock] = None,
        default_ttl: float = 300.0,
    ) -> None:
        if not prefix:
            raise ValueError("prefix must not be empty")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.prefix = prefix
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self._clock = clock or SystemClock()
        self._directory = Path(directory) if directory is not None else None
        self._owns_store = store is None
        self._store = store
        if store is None and directory is not None:
            try:
                self._store = diskcache.Cache(str(self._directory))
            except STORAGE_ERRORS as exc:
                logger.warning(
                    "Persistent cache unavailable at %s, using memory only: %s",
                    self._directory,
                    exc,
                )
                self._store = None

    @property
    def available(self) -> bool:
        """Whether a durable store is attached."""
        return self._store is not None

    # ------------------------------------------------------------------ #
    # Public contract
    # ------------------------------------------------------------------ #

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Persist *value* under *key* for *ttl* seconds, then sweep.

        If the value cannot be written, any older record for *key* is
        removed so it can never be read back in place of *value*.
        """
        if self._store is None:
            return
        ttl = self.default_ttl if ttl is None else ttl
        entry = CacheEntry.create(value, ttl, self._clock.now())
        try:
            raw = entry.encode()
        except (TypeError, ValueError) as exc:
            logger.warning("Persistent cache: value for %r is not serialisable: %s", key, exc)
            self._remove(self.prefix + key)
            return
        try:
            self._store.set(self.prefix + key, raw)
        except STORAGE_ERRORS as exc:
            logger.warning("Persistent cache: failed to set %r: %s", key, exc)
            self._remove(self.prefix + key)
            return
        self.cleanup()

    def get(self, key: str, default: Any = None) -> Any:
        """Return the live value for *key*, or *default*.

        Expired and undecodable records are deleted on the way out.
        """
        entry = self._load(self.prefix + key)
        if entry is None:
            return default
        return entry.value

    def delete(self, key: str) -> bool:
        """Remove *key*. Returns True if it was present."""
        return self._remove(self.prefix + key)

    def clear(self) -> None:
        """Remove every entry under this tier's prefix.

        Keys outside the prefix are left alone.
        """
        for full_key in self._prefixed_keys():
            self._remove(full_key)

    def keys(self) -> list[str]:
        """Unprefixed keys currently on disk, in store iteration order."""
        return [k[len(self.prefix):] for k in self._prefixed_keys()]

    def __len__(self) -> int:
        return len(self._prefixed_keys())

    def size(self) -> int:
        """Number of persisted entries, including ones not yet swept."""
        return len(self._prefixed_keys())

    def cleanup(self) -> int:
        """Sweep expired and undecodable records, then enforce the cap.

        Survivors are ranked by write time, ties broken by store iteration
        order (the store's insertion order), and the oldest are removed
        until ``size() <= max_entries``.

        Returns:
            The number of records removed.
        """
        if self._store is None:
            return 0

        removed = 0
        now = self._clock.now()
        survivors: list[tuple[float, int, str]] = []
        try:
            for index, full_key in enumerate(self._prefixed_keys()):
                raw = self._store.get(full_key)
                if raw is None:
                    continue
                try:
                    entry = CacheEntry.decode(raw)
                except DecodeError:
                    logger.debug("Persistent cache: dropping undecodable %r", full_key)
                    self._store.delete(full_key)
                    removed += 1
                    continue
                if entry.is_expired(now):
                    self._store.delete(full_key)
                    removed += 1
                    continue
                survivors.append((entry.written_at, index, full_key))

            overflow = len(survivors) - self.max_entries
            if overflow > 0:
                survivors.sort()
                for _, _, full_key in survivors[:overflow]:
                    self._store.delete(full_key)
                    removed += 1
                logger.debug("Persistent cache over capacity, trimmed %d entries", overflow)
        except STORAGE_ERRORS as exc:
            logger.warning("Persistent cache: cleanup failed: %s", exc)
        return removed

    def stats(self) -> dict[str, Any]:
        """Return tier statistics for operator tooling."""
        return {
            "available": self.available,
            "size": self.size(),
            "max_entries": self.max_entries,
            "prefix": self.prefix,
            "directory": str(self._directory) if self._directory else None,
        }

    def close(self) -> None:
        """Close the underlying store if this tier opened it."""
        if self._store is not None and self._owns_store:
            try:
                self._store.close()
            except STORAGE_ERRORS as exc:
                logger.warning("Persistent cache: close failed: %s", exc)

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _prefixed_keys(self) -> list[str]:
        if self._store is None:
            return []
        try:
            return [
                k for k in list(self._store)
                if isinstance(k, str) and k.startswith(self.prefix)
            ]
        except STORAGE_ERRORS as exc:
            logger.warning("Persistent cache: failed to list keys: %s", exc)
            return []

    def _load(self, full_key: str) -> Optional[CacheEntry]:
        if self._store is None:
            return None
        try:
            raw = self._store.get(full_key)
        except STORAGE_ERRORS as exc:
            logger.warning("Persistent cache: failed to get %r: %s", full_key, exc)
            return None
        if raw is None:
            return None
        try:
            entry = CacheEntry.decode(raw)
        except DecodeError as exc:
            logger.debug("Persistent cache: corrupt record %r: %s", full_key, exc)
            self._remove(full_key)
            return None
        if entry.is_expired(self._clock.now()):
            self._remove(full_key)
            return None
        return entry

    def _remove(self, full_key: str) -> bool:
        if self._store is None:
            return False
        try:
            return bool(self._store.delete(full_key))
        except STORAGE_ERRORS as exc:
            logger.warning("Persistent cache: failed to delete %r: %s", full_key, exc)
            return False

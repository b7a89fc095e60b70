"""Bounded metric history with rolling aggregates.

:class:`MetricsCollector` keeps one ring buffer per ``(category, key)``
holding the last ``max_history_per_key`` records, plus exact running
counters for API endpoints and cache keys. It is meant to be created once
at startup with :func:`create_collector` and handed to every consumer
(the call interceptor, the cache facade, operator tooling).

The collector is not thread-safe. It assumes the single-threaded,
event-loop-driven model the rest of the package runs in; the ring-buffer
append and the aggregate fold for a key must stay one uninterrupted step.
"""

from __future__ import annotations

import json
import logging
import time
from collections import deque
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping, Optional

from pydantic import ValidationError

from tiercache.clock import Clock, SystemClock
from tiercache.exceptions import InvalidUsageError
from tiercache.metrics.records import (
    RECORD_ADAPTER,
    ApiEndpointSummary,
    ApiRecord,
    ApiStat,
    CacheKeySummary,
    CacheRecord,
    CacheStat,
    MetricCategory,
    MetricRecord,
    NavigationSummary,
    RenderSummary,
    Snapshot,
    Summary,
)
from tiercache.models import MetricsConfig

logger = logging.getLogger(__name__)


class MetricsCollector:
    """Records typed metric events and maintains per-key statistics.

    Args:
        clock: Source of record timestamps.
        max_history_per_key: Ring-buffer capacity per ``(category, key)``.
        context_label: Label written into :meth:`export_all` snapshots.
        max_age_seconds: Default cut-off for :meth:`prune_older_than`.
        timer: Monotonic time source for :meth:`timed_render` and
            :meth:`timed_navigation` durations, in seconds.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        max_history_per_key: int = 50,
        context_label: str = "tiercache",
        max_age_seconds: float = 24 * 60 * 60,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        if max_history_per_key < 1:
            raise ValueError("max_history_per_key must be at least 1")
        self._clock = clock or SystemClock()
        self.max_history_per_key = max_history_per_key
        self.context_label = context_label
        self.max_age_seconds = max_age_seconds
        self._timer = timer
        self._history: dict[MetricCategory, dict[str, deque[MetricRecord]]] = {
            category: {} for category in MetricCategory
        }
        self._api_stats: dict[str, ApiStat] = {}
        self._cache_stats: dict[str, CacheStat] = {}

    # ------------------------------------------------------------------ #
    # Recording
    # ------------------------------------------------------------------ #

    def record(
        self,
        category: MetricCategory | str,
        key: str,
        fields: Mapping[str, Any],
    ) -> MetricRecord:
        """Validate *fields* as a record of *category*, timestamp it, and store it.

        If the buffer for ``(category, key)`` is full, its oldest record is
        dropped first. For ``api`` records the key is the endpoint, so
        ``endpoint`` may be omitted from *fields*.

        Raises:
            InvalidUsageError: If *category* is unknown, *fields* do not fit
                that category's record shape, or an ``api`` record names an
                endpoint other than *key*.
        """
        try:
            category = MetricCategory(category)
        except ValueError as exc:
            raise InvalidUsageError(f"Unknown metric category: {category!r}") from exc

        data = dict(fields)
        if category is MetricCategory.API:
            endpoint = data.setdefault("endpoint", key)
            if endpoint != key:
                raise InvalidUsageError(
                    f"api record endpoint {endpoint!r} does not match key {key!r}"
                )
        data["category"] = category.value
        data["timestamp"] = self._clock.now()
        try:
            record = RECORD_ADAPTER.validate_python(data)
        except ValidationError as exc:
            raise InvalidUsageError(
                f"Invalid {category.value} record for {key!r}: {exc}"
            ) from exc

        self._append(category, key, record)
        return record

    def track_api_call(
        self,
        endpoint: str,
        duration: float,
        success: bool = True,
        cache_hit: bool = False,
    ) -> MetricRecord:
        return self.record(
            MetricCategory.API,
            endpoint,
            {"endpoint": endpoint, "duration": duration, "success": success, "cache_hit": cache_hit},
        )

    def track_render(self, component: str, duration: float) -> MetricRecord:
        return self.record(
            MetricCategory.RENDERS, component, {"component": component, "duration": duration}
        )

    def track_web_vital(self, name: str, value: float) -> MetricRecord:
        return self.record(MetricCategory.WEB_VITALS, name, {"name": name, "value": value})

    def track_navigation(self, source: str, target: str, duration: float) -> MetricRecord:
        return self.record(
            MetricCategory.NAVIGATION,
            f"{source}_to_{target}",
            {"source": source, "target": target, "duration": duration},
        )

    def track_cache(self, cache_type: str, operation: str, hit: bool = True) -> MetricRecord:
        return self.record(
            MetricCategory.CACHE,
            f"{cache_type}_{operation}",
            {"cache_type": cache_type, "operation": operation, "hit": hit},
        )

    @contextmanager
    def timed_render(self, component: str) -> Iterator[None]:
        """Time the enclosed block and record it as a render of *component*.

        Nothing is recorded if the block raises.

        Example::

            with metrics.timed_render("ProductGrid"):
                html = render_grid(products)
        """
        started = self._timer()
        yield
        self.track_render(component, max(0.0, self._timer() - started))

    @contextmanager
    def timed_navigation(self, source: str, target: str) -> Iterator[None]:
        """Time the enclosed block and record it as a *source* to *target* navigation.

        Nothing is recorded if the block raises.
        """
        started = self._timer()
        yield
        self.track_navigation(source, target, max(0.0, self._timer() - started))

    # ------------------------------------------------------------------ #
    # Reading
    # ------------------------------------------------------------------ #

    def history(self, category: MetricCategory | str, key: str) -> list[MetricRecord]:
        """Records currently buffered for ``(category, key)``, oldest first."""
        buffer = self._history[MetricCategory(category)].get(key)
        return list(buffer) if buffer else []

    def api_stat(self, endpoint: str) -> Optional[ApiStat]:
        return self._api_stats.get(endpoint)

    def cache_stat(self, key: str) -> Optional[CacheStat]:
        return self._cache_stats.get(key)

    def get_summary(self) -> Summary:
        """Roll every category up into a :class:`Summary`.

        * **api** -- exact call counters and rates per endpoint.
        * **web_vitals** -- the most recent value per vital name.
        * **cache** -- hit/miss counters per cache key.
        * **navigation** / **renders** -- mean duration over the buffered
          records per route / component.
        """
        api = [
            ApiEndpointSummary(
                endpoint=endpoint,
                count=stat.count,
                total_duration=stat.total_duration,
                success_count=stat.success_count,
                error_count=stat.error_count,
                cache_hits=stat.cache_hits,
            )
            for endpoint, stat in sorted(self._api_stats.items())
        ]

        web_vitals = {
            name: buffer[-1].value  # type: ignore[union-attr]
            for name, buffer in sorted(self._history[MetricCategory.WEB_VITALS].items())
            if buffer
        }

        cache = [
            CacheKeySummary(key=key, hits=stat.hits, misses=stat.misses)
            for key, stat in sorted(self._cache_stats.items())
        ]

        navigation = [
            NavigationSummary(
                route=route,
                average_duration=_mean_duration(buffer),
                total_navigations=len(buffer),
            )
            for route, buffer in sorted(self._history[MetricCategory.NAVIGATION].items())
            if buffer
        ]

        renders = [
            RenderSummary(
                component=component,
                average_duration=_mean_duration(buffer),
                renders=len(buffer),
            )
            for component, buffer in sorted(self._history[MetricCategory.RENDERS].items())
            if buffer
        ]

        return Summary(
            api=api, web_vitals=web_vitals, cache=cache, navigation=navigation, renders=renders
        )

    # ------------------------------------------------------------------ #
    # Export
    # ------------------------------------------------------------------ #

    def export_all(self) -> Snapshot:
        """Every buffered record, grouped by category and key."""
        return Snapshot(
            timestamp=self._clock.now(),
            context_label=self.context_label,
            metrics={
                category: {key: list(buffer) for key, buffer in sorted(keys.items())}
                for category, keys in self._history.items()
            },
        )

    def export_json(self) -> str:
        """:meth:`export_all` as indented JSON with sorted keys, for diffing."""
        data = self.export_all().model_dump(mode="json")
        return json.dumps(data, indent=2, sort_keys=True) + "\n"

    def write_export(self, path: str | Path) -> Path:
        """Write :meth:`export_json` to *path* atomically and return the path."""
        from tiercache.config import write_text_atomic

        target = Path(path)
        write_text_atomic(target, self.export_json())
        logger.info("Exported metrics to %s", target)
        return target

    @classmethod
    def from_snapshot(
        cls,
        snapshot: Snapshot,
        max_history_per_key: int = 50,
    ) -> MetricsCollector:
        """Rebuild a collector by replaying a snapshot's records in order.

        Aggregates then describe the exported window only, not the
        lifetime of the process that produced it.
        """
        collector = cls(
            max_history_per_key=max_history_per_key,
            context_label=snapshot.context_label,
        )
        for category, keys in snapshot.metrics.items():
            for key, records in keys.items():
                for record in records:
                    collector._append(MetricCategory(category), key, record)
        return collector

    # ------------------------------------------------------------------ #
    # Housekeeping
    # ------------------------------------------------------------------ #

    def prune_older_than(self, max_age: Optional[float] = None) -> int:
        """Drop buffered records older than ``now - max_age`` seconds.

        A key whose buffer ends up empty is forgotten entirely, including
        its aggregate counters.

        Args:
            max_age: Age cut-off in seconds; defaults to ``max_age_seconds``.

        Returns:
            The number of records removed.
        """
        max_age = self.max_age_seconds if max_age is None else max_age
        cutoff = self._clock.now() - max_age
        removed = 0
        for category, keys in self._history.items():
            for key in list(keys):
                buffer = keys[key]
                kept = [record for record in buffer if record.timestamp > cutoff]
                removed += len(buffer) - len(kept)
                if kept:
                    keys[key] = deque(kept, maxlen=self.max_history_per_key)
                    continue
                del keys[key]
                if category is MetricCategory.API:
                    self._api_stats.pop(key, None)
                elif category is MetricCategory.CACHE:
                    self._cache_stats.pop(key, None)
        if removed:
            logger.debug("Pruned %d metric records older than %.0fs", removed, max_age)
        return removed

    def reset(self) -> None:
        """Forget every record and aggregate."""
        for keys in self._history.values():
            keys.clear()
        self._api_stats.clear()
        self._cache_stats.clear()

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _append(self, category: MetricCategory, key: str, record: MetricRecord) -> None:
        keys = self._history[category]
        buffer = keys.get(key)
        if buffer is None:
            buffer = keys[key] = deque(maxlen=self.max_history_per_key)
        # A full deque with maxlen drops its oldest item on append.
        buffer.append(record)

        if isinstance(record, ApiRecord):
            self._api_stats[key] = self._api_stats.get(key, ApiStat()).fold(record)
        elif isinstance(record, CacheRecord):
            self._cache_stats[key] = self._cache_stats.get(key, CacheStat()).fold(record)


def _mean_duration(buffer: deque[MetricRecord]) -> float:
    return sum(record.duration for record in buffer) / len(buffer)  # type: ignore[union-attr]


def create_collector(
    config: Optional[MetricsConfig] = None,
    clock: Optional[Clock] = None,
) -> MetricsCollector:
    """Build the process-wide :class:`MetricsCollector` from configuration."""
    config = config or MetricsConfig()
    return MetricsCollector(
        clock=clock,
        max_history_per_key=config.max_history_per_key,
        context_label=config.context_label,
        max_age_seconds=config.max_age_seconds,
    )

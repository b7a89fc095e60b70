"""Performance metrics for tiercache.

:class:`MetricsCollector` keeps a bounded history of typed records per
``(category, key)`` and exact aggregate statistics for API endpoints and
cache keys. Record and summary shapes live in :mod:`tiercache.metrics.records`.
"""

from tiercache.metrics.collector import MetricsCollector, create_collector
from tiercache.metrics.records import (
    ApiRecord,
    ApiStat,
    CacheRecord,
    CacheStat,
    MetricCategory,
    NavigationRecord,
    RenderRecord,
    Snapshot,
    Summary,
    WebVitalRecord,
)

__all__ = [
    "ApiRecord",
    "ApiStat",
    "CacheRecord",
    "CacheStat",
    "MetricCategory",
    "MetricsCollector",
    "NavigationRecord",
    "RenderRecord",
    "Snapshot",
    "Summary",
    "WebVitalRecord",
    "create_collector",
]

"""tiercache -- two-tier response cache with call metrics.

This package keeps API responses in a fast in-process tier backed by a
durable on-disk tier, and measures the outbound calls that fill it. The
pieces are plain objects wired together explicitly at startup:

    from tiercache import create_cache, create_collector, CallInterceptor

    metrics = create_collector()
    cache = create_cache(cache_dir, metrics=metrics)
    interceptor = CallInterceptor(metrics)

Modules:
    clock: Injectable time sources.
    cache: Volatile tier, persistent tier and the facade over both.
    metrics: Ring-buffered metric records and rolling aggregates.
    interceptor: Measures outbound calls and reports them as metrics.
    client: Async HTTP client that reads through the cache.
    models: Pydantic configuration models and the TTL category table.
    config: XDG-aware configuration loading and saving.
    app: Typer application for operator tooling.
"""

from tiercache.cache import CacheFacade, PersistentCache, VolatileCache, create_cache
from tiercache.clock import Clock, ManualClock, SystemClock
from tiercache.interceptor import CallInterceptor, CallOutcome
from tiercache.metrics import MetricsCollector, create_collector

__version__ = "0.1.0"

__all__ = [
    "CacheFacade",
    "CallInterceptor",
    "CallOutcome",
    "Clock",
    "ManualClock",
    "MetricsCollector",
    "PersistentCache",
    "SystemClock",
    "VolatileCache",
    "create_cache",
    "create_collector",
]

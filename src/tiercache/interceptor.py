"""Measure outbound calls and report them to the metrics collector.

Nothing here patches a global: callers opt in by routing calls through a
:class:`CallInterceptor`, either explicitly (:meth:`CallInterceptor.measure`,
:meth:`CallInterceptor.wrap`, :meth:`CallInterceptor.track_service_call`)
or by building their :mod:`httpx` client on a metered transport::

    interceptor = CallInterceptor(metrics)
    async with httpx.AsyncClient(transport=interceptor.async_transport()) as http:
        await http.get("https://api.example.com/v1/products")

Every completed or failed call produces exactly one ``api`` record keyed
by a low-cardinality endpoint name (see :func:`endpoint_key`). Failures
are recorded and then re-raised unchanged. Aborted calls
(:class:`asyncio.CancelledError` or
:class:`~tiercache.exceptions.CallAbortedError`) are counted separately and
never recorded as failures.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections import Counter
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from tiercache.exceptions import CallAbortedError
from tiercache.metrics.collector import MetricsCollector

logger = logging.getLogger(__name__)

T = TypeVar("T")

CACHE_HEADER = "x-cache"

_ABORT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    asyncio.CancelledError,
    CallAbortedError,
)


class CallOutcome(str, enum.Enum):
    """How a measured call ended."""

    SUCCESS = "success"
    FAILURE = "failure"
    ABORTED = "aborted"


def endpoint_key(target: Any) -> str:
    """Reduce a call target to its last two path segments.

    Accepts a URL string, :class:`httpx.URL`, :class:`httpx.Request`, or
    anything with a ``url`` attribute. Query strings and hosts are dropped
    so that metrics aggregate per endpoint rather than per unique URL.

    Example::

        >>> endpoint_key("https://api.example.com/v1/products/search?q=pads")
        'products/search'
    """
    url = getattr(target, "url", target)
    try:
        path = httpx.URL(str(url)).path
    except (httpx.InvalidURL, TypeError, ValueError):
        return "unknown"
    return "/".join(path.split("/")[-2:]) or "unknown"


def _response_ok(response: Any) -> bool:
    ok = getattr(response, "is_success", None)
    if ok is None:
        ok = getattr(response, "ok", True)
    return bool(ok)


def _result_flag(result: Any, name: str) -> Any:
    """Read *name* off a dict or object result, or ``None``."""
    if isinstance(result, dict):
        return result.get(name)
    return getattr(result, name, None)


class CallInterceptor:
    """Times calls and forwards their outcome to a :class:`MetricsCollector`.

    Args:
        collector: Where ``api`` records go.
        timer: Monotonic time source for durations, in seconds.
        cache_header: Response header whose value ``HIT`` marks a response
            served from an upstream cache.
    """

    def __init__(
        self,
        collector: MetricsCollector,
        timer: Callable[[], float] = time.perf_counter,
        cache_header: str = CACHE_HEADER,
    ) -> None:
        self._collector = collector
        self._timer = timer
        self._cache_header = cache_header
        self.outcomes: Counter[CallOutcome] = Counter()

    # ------------------------------------------------------------------ #
    # Measuring
    # ------------------------------------------------------------------ #

    async def measure(
        self,
        endpoint: str,
        call: Callable[[], Awaitable[T]],
        is_success: Optional[Callable[[T], bool]] = None,
        is_cache_hit: Optional[Callable[[T], bool]] = None,
    ) -> T:
        """Await ``call()`` and record its duration and outcome under *endpoint*.

        Args:
            endpoint: Metrics key for the call.
            call: Zero-argument coroutine function performing the call.
            is_success: Judges a returned result; defaults to "did not raise".
            is_cache_hit: Reads the cache-hit marker off a returned result.
                If either predicate raises, the call is recorded as a
                failure and its result is still returned.

        Returns:
            Whatever ``call()`` returned.

        Raises:
            Whatever ``call()`` raised, after it has been recorded.
        """
        started = self._timer()
        try:
            result = await call()
        except _ABORT_EXCEPTIONS:
            self._aborted(endpoint)
            raise
        except Exception:
            self._finish(endpoint, started, success=False, cache_hit=False)
            raise
        self._finish_result(endpoint, started, result, is_success, is_cache_hit)
        return result

    def measure_sync(
        self,
        endpoint: str,
        call: Callable[[], T],
        is_success: Optional[Callable[[T], bool]] = None,
        is_cache_hit: Optional[Callable[[T], bool]] = None,
    ) -> T:
        """Blocking counterpart of :meth:`measure`."""
        started = self._timer()
        try:
            result = call()
        except CallAbortedError:
            self._aborted(endpoint)
            raise
        except Exception:
            self._finish(endpoint, started, success=False, cache_hit=False)
            raise
        self._finish_result(endpoint, started, result, is_success, is_cache_hit)
        return result

    def wrap(
        self, fetch: Callable[..., Awaitable[Any]]
    ) -> Callable[..., Awaitable[Any]]:
        """Return a measured version of a fetch-like coroutine function.

        The wrapped function's first argument is the call target (URL or
        request); its result is judged by ``is_success`` / ``ok`` and by the
        cache header.

        Example::

            get = interceptor.wrap(http.get)
            response = await get("https://api.example.com/v1/brands")
        """

        @wraps(fetch)
        async def metered(target: Any, *args: Any, **kwargs: Any) -> Any:
            return await self.measure(
                endpoint_key(target),
                lambda: fetch(target, *args, **kwargs),
                is_success=_response_ok,
                is_cache_hit=self.header_cache_hit,
            )

        return metered

    async def track_service_call(
        self,
        service: str,
        operation: str,
        call: Callable[[], Awaitable[T]],
    ) -> T:
        """Measure a service-layer coroutine under ``service/operation``.

        A result with ``success`` set to ``False`` counts as a failure; a
        truthy ``from_cache`` (directly or under ``performance``) counts as
        a cache hit.
        """
        return await self.measure(
            f"{service}/{operation}",
            call,
            is_success=lambda result: _result_flag(result, "success") is not False,
            is_cache_hit=_service_cache_hit,
        )

    def header_cache_hit(self, response: Any) -> bool:
        """Whether *response* carries ``<cache_header>: HIT``."""
        headers = getattr(response, "headers", None)
        if headers is None:
            return False
        value = headers.get(self._cache_header)
        return isinstance(value, str) and value.upper() == "HIT"

    # ------------------------------------------------------------------ #
    # Transports
    # ------------------------------------------------------------------ #

    def transport(self, transport: Optional[httpx.BaseTransport] = None) -> MeteredTransport:
        """A metered transport for :class:`httpx.Client`."""
        return MeteredTransport(self, transport)

    def async_transport(
        self, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> AsyncMeteredTransport:
        """A metered transport for :class:`httpx.AsyncClient`."""
        return AsyncMeteredTransport(self, transport)

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _finish_result(
        self,
        endpoint: str,
        started: float,
        result: Any,
        is_success: Optional[Callable[[Any], bool]],
        is_cache_hit: Optional[Callable[[Any], bool]],
    ) -> None:
        try:
            success = bool(is_success(result)) if is_success else True
            cache_hit = bool(is_cache_hit(result)) if is_cache_hit else False
        except Exception:
            logger.warning("Could not classify result of call to %s", endpoint, exc_info=True)
            success, cache_hit = False, False
        self._finish(endpoint, started, success=success, cache_hit=cache_hit)

    def _finish(self, endpoint: str, started: float, success: bool, cache_hit: bool) -> None:
        duration = max(0.0, self._timer() - started)
        self.outcomes[CallOutcome.SUCCESS if success else CallOutcome.FAILURE] += 1
        self._collector.track_api_call(
            endpoint, duration, success=success, cache_hit=cache_hit
        )

    def _aborted(self, endpoint: str) -> None:
        self.outcomes[CallOutcome.ABORTED] += 1
        logger.debug("Call to %s aborted, not recorded", endpoint)


def _service_cache_hit(result: Any) -> bool:
    if _result_flag(result, "from_cache"):
        return True
    performance = _result_flag(result, "performance")
    return bool(performance is not None and _result_flag(performance, "from_cache"))


class MeteredTransport(httpx.BaseTransport):
    """:class:`httpx.BaseTransport` that measures every request it sends.

    Args:
        interceptor: Receives the measurements.
        transport: The transport that actually sends requests; defaults to
            :class:`httpx.HTTPTransport`.
    """

    def __init__(
        self,
        interceptor: CallInterceptor,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._interceptor = interceptor
        self._transport = transport or httpx.HTTPTransport()

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        return self._interceptor.measure_sync(
            endpoint_key(request),
            lambda: self._transport.handle_request(request),
            is_success=_response_ok,
            is_cache_hit=self._interceptor.header_cache_hit,
        )

    def close(self) -> None:
        self._transport.close()


class AsyncMeteredTransport(httpx.AsyncBaseTransport):
    """:class:`httpx.AsyncBaseTransport` that measures every request it sends.

    Args:
        interceptor: Receives the measurements.
        transport: The transport that actually sends requests; defaults to
            :class:`httpx.AsyncHTTPTransport`.
    """

    def __init__(
        self,
        interceptor: CallInterceptor,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._interceptor = interceptor
        self._transport = transport or httpx.AsyncHTTPTransport()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self._interceptor.measure(
            endpoint_key(request),
            lambda: self._transport.handle_async_request(request),
            is_success=_response_ok,
            is_cache_hit=self._interceptor.header_cache_hit,
        )

    async def aclose(self) -> None:
        await self._transport.aclose()

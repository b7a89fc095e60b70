"""Asynchronous HTTP client that reads through the two-tier cache.

:class:`CachedClient` wraps :class:`httpx.AsyncClient` and layers on:

- **Read-through caching** -- ``get_json`` consults the
  :class:`~tiercache.cache.facade.CacheFacade` first and only goes to the
  network on a total miss, storing the decoded body with the TTL of the
  requested data category.
- **Call metrics** -- when a :class:`~tiercache.interceptor.CallInterceptor`
  is given, the underlying httpx client is built on its metered transport,
  so every request that reaches the network is recorded.
- **Retry with backoff** -- retries on 5xx and network errors with
  exponential delay.
- **Error mapping** -- HTTP error statuses become typed
  :class:`~tiercache.exceptions.TiercacheError` subclasses.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional

import httpx

from tiercache.cache.facade import CacheFacade
from tiercache.exceptions import ConnectionError_, NotFoundError, ServerError
from tiercache.interceptor import CallInterceptor
from tiercache.models import CacheCategory

logger = logging.getLogger(__name__)


class CachedClient:
    """Cache-aware async HTTP client. Must be used as an async context manager.

    Args:
        base_url: Prefix for every request path.
        cache: Facade consulted before the network.
        interceptor: Optional call interceptor; when set, requests are sent
            through its metered transport.
        transport: Transport that actually sends requests (handy for
            :class:`httpx.MockTransport` in tests).
        timeout: Request timeout in seconds.
        max_retries: Extra attempts after a 5xx or network error.
        backoff: Base delay in seconds; attempt *n* waits ``backoff * 2**n``.
        sleep: Awaitable delay function, :func:`asyncio.sleep` by default.

    Example::

        async with CachedClient("https://api.example.com", cache, interceptor) as client:
            brands = await client.get_json("/v1/brands", category=CacheCategory.BRANDS)
    """

    def __init__(
        self,
        base_url: str,
        cache: CacheFacade,
        interceptor: Optional[CallInterceptor] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._base_url = base_url
        self._cache = cache
        self._interceptor = interceptor
        self._transport = transport
        self._timeout = timeout
        self._max_retries = max_retries
        self._backoff = backoff
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None

    # ------------------------------------------------------------------ #
    # Async context manager
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> CachedClient:
        transport: Optional[httpx.AsyncBaseTransport] = self._transport
        if self._interceptor is not None:
            transport = self._interceptor.async_transport(self._transport)
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            follow_redirects=True,
            transport=transport,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------ #
    # Public methods
    # ------------------------------------------------------------------ #

    async def get_json(
        self,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        category: CacheCategory | str | None = None,
        persist: bool = True,
        use_cache: bool = True,
    ) -> Any:
        """GET *path* and return the decoded JSON body, via the cache.

        Args:
            path: URL path appended to ``base_url``; also the cache namespace.
            params: Query parameters; part of the cache key.
            category: Data category selecting the TTL of a fresh entry.
            persist: Write fresh entries to the persistent tier too.
            use_cache: ``False`` bypasses the cache in both directions.

        Raises:
            NotFoundError: On 404.
            ServerError: On any other error status, after retries for 5xx.
            ConnectionError_: On network errors after all retries.
        """
        if not use_cache:
            return await self._fetch_json(path, params)
        return await self._cache.get_or_fetch(
            path,
            params,
            lambda: self._fetch_json(path, params),
            category=category,
            persist=persist,
        )

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        json_body: Optional[Any] = None,
    ) -> httpx.Response:
        """Send a request with retry and error mapping; never cached."""
        response = await self._execute_with_retry(method, path, params, json_body)
        self._map_response_error(response)
        return response

    def invalidate(self, pattern: str) -> int:
        """Drop cached responses whose key contains *pattern*."""
        return self._cache.invalidate_pattern(pattern)

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    async def _fetch_json(self, path: str, params: Optional[Mapping[str, Any]]) -> Any:
        response = await self.request("GET", path, params=params)
        if not response.content:
            return None
        return response.json()

    async def _execute_with_retry(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]],
        json_body: Any,
    ) -> httpx.Response:
        """Send the request, retrying 5xx responses and network errors."""
        assert self._client is not None, "Client not initialised -- use as async context manager"

        for attempt in range(self._max_retries + 1):
            try:
                kwargs: dict[str, Any] = {"method": method, "url": path}
                if params:
                    kwargs["params"] = dict(params)
                if json_body is not None:
                    kwargs["json"] = json_body

                response = await self._client.request(**kwargs)

                if response.status_code >= 500 and attempt < self._max_retries:
                    delay = self._backoff * 2 ** attempt
                    logger.debug(
                        "Server error %d on %s %s, retrying in %.1fs (attempt %d/%d)",
                        response.status_code, method, path, delay, attempt + 1, self._max_retries,
                    )
                    await self._sleep(delay)
                    continue

                return response

            except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
                if attempt < self._max_retries:
                    delay = self._backoff * 2 ** attempt
                    logger.debug(
                        "Connection error on %s %s: %s, retrying in %.1fs (attempt %d/%d)",
                        method, path, exc, delay, attempt + 1, self._max_retries,
                    )
                    await self._sleep(delay)
                    continue
                raise ConnectionError_(
                    f"Connection failed after {self._max_retries + 1} attempts: {exc}"
                ) from exc

        raise ServerError("Request failed after all retries")  # pragma: no cover

    @staticmethod
    def _map_response_error(response: httpx.Response) -> None:
        """Raise a typed exception for error HTTP status codes."""
        status = response.status_code
        if status < 400:
            return

        try:
            detail = response.json()
            if isinstance(detail, dict):
                msg = detail.get("message") or detail.get("error") or detail.get("detail") or ""
            else:
                msg = str(detail)
        except ValueError:
            msg = response.text[:200] if response.text else ""

        full_msg = f"HTTP {status}: {msg}" if msg else f"HTTP {status}"
        if status == 404:
            raise NotFoundError(full_msg)
        raise ServerError(full_msg)

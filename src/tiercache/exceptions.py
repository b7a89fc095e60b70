"""Exception hierarchy for tiercache.

All exceptions inherit from :class:`TiercacheError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`tiercache.exit_codes`.
The CLI entry point in :func:`tiercache.app.main` catches ``TiercacheError``
and exits with that code.

Cache-layer failures never reach callers of the cache itself: the
persistent tier catches storage errors and degrades to a miss. The
classes below surface only where a caller explicitly asks for them (the
operator CLI, :class:`~tiercache.client.CachedClient`).

Subclass hierarchy::

    TiercacheError (exit 1)
    +-- InvalidUsageError        (exit 2)
    +-- ConfigError              (exit 1)
    +-- NotFoundError            (exit 4)
    +-- ServerError              (exit 5)
    +-- ConnectionError_         (exit 6)
    +-- StorageUnavailableError  (exit 8)
    +-- CallAbortedError         (exit 130)
"""

from tiercache.exit_codes import (
    EXIT_ABORTED,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_SERVER_ERROR,
    EXIT_STORAGE_UNAVAILABLE,
)


class TiercacheError(Exception):
    """Base exception for all tiercache errors.

    Args:
        message: Human-readable error description.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(TiercacheError):
    """Raised for invalid CLI arguments or malformed input files."""

    exit_code = EXIT_INVALID_USAGE


class ConfigError(TiercacheError):
    """Raised for configuration problems (invalid JSON, failed validation)."""

    exit_code = EXIT_GENERIC_FAILURE


class NotFoundError(TiercacheError):
    """Raised when the API returns HTTP 404 or a cache entry is absent."""

    exit_code = EXIT_NOT_FOUND


class ServerError(TiercacheError):
    """Raised when the API returns an HTTP error status other than 404."""

    exit_code = EXIT_SERVER_ERROR


class ConnectionError_(TiercacheError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR


class StorageUnavailableError(TiercacheError):
    """Raised by operator tooling when the persistent store cannot be opened.

    Library code never raises this to cache callers; the persistent tier
    logs the failure and serves misses instead.
    """

    exit_code = EXIT_STORAGE_UNAVAILABLE


class CallAbortedError(TiercacheError):
    """Raised by a caller to abandon an in-flight call.

    :class:`~tiercache.interceptor.CallInterceptor` treats this (and
    :class:`asyncio.CancelledError`) as an aborted outcome: the call is not
    recorded as a failure.
    """

    exit_code = EXIT_ABORTED

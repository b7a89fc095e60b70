"""Numeric process exit codes for the ``tiercache`` operator CLI.

Each constant maps to an error category and is referenced by the
corresponding :class:`~tiercache.exceptions.TiercacheError` subclass, so
scripts can branch on the failure class without parsing stderr.
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments."""

EXIT_NOT_FOUND = 4
"""The requested resource or cache entry was not found."""

EXIT_SERVER_ERROR = 5
"""The remote API returned an HTTP 5xx server error."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_STORAGE_UNAVAILABLE = 8
"""The persistent cache store could not be opened."""

EXIT_ABORTED = 130
"""The operation was cancelled."""

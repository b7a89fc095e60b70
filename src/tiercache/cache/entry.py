"""The record both cache tiers store."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any


class DecodeError(ValueError):
    """A persisted record could not be turned back into a :class:`CacheEntry`."""


@dataclass(frozen=True)
class CacheEntry:
    """An immutable ``(value, expires_at)`` pair.

    Entries are replaced on every write, never mutated. An entry is
    expired once the clock is strictly past ``expires_at``.
    """

    value: Any
    expires_at: float
    written_at: float = 0.0

    @classmethod
    def create(cls, value: Any, ttl: float, now: float) -> CacheEntry:
        return cls(value=value, expires_at=now + ttl, written_at=now)

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def encode(self) -> str:
        """Serialise to the JSON string written to the durable store."""
        return json.dumps(
            {
                "value": self.value,
                "expires_at": self.expires_at,
                "written_at": self.written_at,
            },
            separators=(",", ":"),
        )

    @classmethod
    def decode(cls, raw: Any) -> CacheEntry:
        """Parse a stored record.

        Raises:
            DecodeError: If *raw* is not JSON, not an object, or lacks a
                finite numeric ``expires_at``.
        """
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        if not isinstance(raw, str):
            raise DecodeError(f"Unexpected stored type {type(raw).__name__}")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise DecodeError(str(exc)) from exc
        if not isinstance(data, dict) or "value" not in data:
            raise DecodeError("Stored record is not a cache entry")
        expires_at = data.get("expires_at")
        if isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)):
            raise DecodeError("Stored record has no numeric expires_at")
        if not math.isfinite(expires_at):
            raise DecodeError("Stored record has a non-finite expires_at")
        written_at = data.get("written_at", 0.0)
        if isinstance(written_at, bool) or not isinstance(written_at, (int, float)):
            written_at = 0.0
        return cls(
            value=data["value"],
            expires_at=float(expires_at),
            written_at=float(written_at),
        )

"""Pydantic configuration models shared across tiercache.

This is the single source of truth for configuration shapes. Everything
here is serialised as JSON in the user's config directory and loaded by
:mod:`tiercache.config`:

    :class:`CacheCategory`, :class:`CacheConfig`, :class:`MetricsConfig`,
    and :class:`GlobalConfig`.

Metric record shapes live in :mod:`tiercache.metrics.records` because
they describe runtime data rather than configuration.
"""

from __future__ import annotations

import enum

from pydantic import BaseModel, Field


class CacheCategory(str, enum.Enum):
    """Data categories with their own default time-to-live.

    Callers pick the category that matches the data they are caching and
    let :meth:`CacheConfig.ttl_for` translate it to seconds.
    """

    SEARCH_RESULTS = "search_results"
    PRODUCT_DETAIL = "product_detail"
    PRODUCTS = "products"
    CATEGORIES = "categories"
    BRANDS = "brands"
    DEALERS = "dealers"
    USER_DATA = "user_data"


DEFAULT_TTLS: dict[CacheCategory, float] = {
    CacheCategory.SEARCH_RESULTS: 2 * 60,
    CacheCategory.PRODUCT_DETAIL: 10 * 60,
    CacheCategory.PRODUCTS: 5 * 60,
    CacheCategory.CATEGORIES: 30 * 60,
    CacheCategory.BRANDS: 30 * 60,
    CacheCategory.DEALERS: 15 * 60,
    CacheCategory.USER_DATA: 1 * 60,
}


class CacheConfig(BaseModel):
    """Two-tier cache settings stored in :class:`GlobalConfig`.

    The ``ttls`` table maps each :class:`CacheCategory` to seconds. It is
    configuration, not logic: the facade never hardcodes a TTL, it only
    looks one up here when the caller names a category.
    """

    enabled_persistent: bool = Field(
        default=True, description="Write through to the on-disk tier"
    )
    max_memory_entries: int = Field(
        default=50, ge=1, description="Capacity of the volatile tier"
    )
    max_storage_entries: int = Field(
        default=100, ge=1, description="Capacity of the persistent tier"
    )
    storage_prefix: str = Field(
        default="tiercache_",
        min_length=1,
        description="Namespace prefix applied to every persisted key",
    )
    default_ttl_seconds: float = Field(
        default=DEFAULT_TTLS[CacheCategory.PRODUCTS],
        gt=0,
        description="TTL used when none is given, and for promoted entries",
    )
    ttls: dict[CacheCategory, float] = Field(
        default_factory=lambda: dict(DEFAULT_TTLS),
        description="Default TTL in seconds per data category",
    )

    def ttl_for(self, category: CacheCategory | str | None) -> float:
        """Return the TTL in seconds for *category*.

        Unknown or missing categories fall back to ``default_ttl_seconds``.
        """
        if category is None:
            return self.default_ttl_seconds
        try:
            key = CacheCategory(category)
        except ValueError:
            return self.default_ttl_seconds
        return self.ttls.get(key, self.default_ttl_seconds)


class MetricsConfig(BaseModel):
    """Metrics collector settings stored in :class:`GlobalConfig`."""

    max_history_per_key: int = Field(
        default=50, ge=1, description="Ring-buffer size per (category, key)"
    )
    max_age_seconds: float = Field(
        default=24 * 60 * 60,
        gt=0,
        description="Default age cut-off for prune_older_than",
    )
    context_label: str = Field(
        default="tiercache", description="Label written into exported snapshots"
    )


class GlobalConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/tiercache/config.json``.

    Loaded and saved by :func:`~tiercache.config.load_global_config` and
    :func:`~tiercache.config.save_global_config`. See
    :func:`~tiercache.config.resolve_config` for the precedence chain.
    """

    cache: CacheConfig = Field(default_factory=CacheConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

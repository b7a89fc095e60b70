"""Metric record shapes and the aggregates folded from them.

Each metric category has its own record model with a fixed field set,
tagged by a ``category`` literal so a mixed stream can be validated as
one discriminated union (:data:`MetricRecord`). Aggregates
(:class:`ApiStat`, :class:`CacheStat`) are immutable and only ever
produced by folding a record into the previous value, so their derived
rates always agree with their counters.
"""

from __future__ import annotations

import enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, computed_field


class MetricCategory(str, enum.Enum):
    """Top-level grouping of metric records."""

    API = "api"
    RENDERS = "renders"
    WEB_VITALS = "web_vitals"
    NAVIGATION = "navigation"
    CACHE = "cache"


# --- Records ---


class _BaseRecord(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    timestamp: float


class ApiRecord(_BaseRecord):
    """One outbound call as seen by the call interceptor."""

    category: Literal["api"] = "api"
    endpoint: str
    duration: float = Field(ge=0)
    success: bool
    cache_hit: bool = False


class RenderRecord(_BaseRecord):
    """Time spent producing one view or component."""

    category: Literal["renders"] = "renders"
    component: str
    duration: float = Field(ge=0)


class WebVitalRecord(_BaseRecord):
    """A single sample of a named page-quality measurement (LCP, FID, CLS...)."""

    category: Literal["web_vitals"] = "web_vitals"
    name: str
    value: float


class NavigationRecord(_BaseRecord):
    """Duration of a transition between two routes."""

    category: Literal["navigation"] = "navigation"
    source: str
    target: str
    duration: float = Field(ge=0)


class CacheRecord(_BaseRecord):
    """A cache lookup and whether it hit."""

    category: Literal["cache"] = "cache"
    cache_type: str
    operation: str
    hit: bool


MetricRecord = Annotated[
    Union[ApiRecord, RenderRecord, WebVitalRecord, NavigationRecord, CacheRecord],
    Field(discriminator="category"),
]

RECORD_ADAPTER: TypeAdapter[MetricRecord] = TypeAdapter(MetricRecord)


# --- Aggregates ---


class ApiStat(BaseModel):
    """Running statistics for one API endpoint.

    Counters are exact integers; the rates are computed from them on
    access, so ``average_duration * count == total_duration`` and
    ``success_rate == success_count / count * 100`` hold after every fold.
    """

    model_config = ConfigDict(frozen=True)

    count: int = 0
    total_duration: float = 0.0
    success_count: int = 0
    error_count: int = 0
    cache_hits: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def average_duration(self) -> float:
        return self.total_duration / self.count if self.count else 0.0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success_rate(self) -> float:
        return self.success_count / self.count * 100 if self.count else 0.0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def cache_hit_rate(self) -> float:
        return self.cache_hits / self.count * 100 if self.count else 0.0

    def fold(self, record: ApiRecord) -> ApiStat:
        """Return the statistics after one more call."""
        return ApiStat(
            count=self.count + 1,
            total_duration=self.total_duration + record.duration,
            success_count=self.success_count + (1 if record.success else 0),
            error_count=self.error_count + (0 if record.success else 1),
            cache_hits=self.cache_hits + (1 if record.cache_hit else 0),
        )


class CacheStat(BaseModel):
    """Hit/miss counters for one ``cacheType_operation`` key."""

    model_config = ConfigDict(frozen=True)

    hits: int = 0
    misses: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_operations(self) -> int:
        return self.hits + self.misses

    @computed_field  # type: ignore[prop-decorator]
    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total * 100 if total else 0.0

    def fold(self, record: CacheRecord) -> CacheStat:
        if record.hit:
            return CacheStat(hits=self.hits + 1, misses=self.misses)
        return CacheStat(hits=self.hits, misses=self.misses + 1)


# --- Summary and export shapes ---


class ApiEndpointSummary(ApiStat):
    endpoint: str


class CacheKeySummary(CacheStat):
    key: str


class NavigationSummary(BaseModel):
    route: str
    average_duration: float
    total_navigations: int


class RenderSummary(BaseModel):
    component: str
    average_duration: float
    renders: int


class Summary(BaseModel):
    """Per-category rollup returned by :meth:`MetricsCollector.get_summary`."""

    api: list[ApiEndpointSummary] = Field(default_factory=list)
    web_vitals: dict[str, float] = Field(default_factory=dict)
    cache: list[CacheKeySummary] = Field(default_factory=list)
    navigation: list[NavigationSummary] = Field(default_factory=list)
    renders: list[RenderSummary] = Field(default_factory=list)


class Snapshot(BaseModel):
    """Everything the collector holds, for download and offline diffing.

    Shape: ``{timestamp, context_label, metrics: {category: {key: [record, ...]}}}``.
    """

    timestamp: float
    context_label: str
    metrics: dict[MetricCategory, dict[str, list[MetricRecord]]] = Field(
        default_factory=dict
    )

"""Tests for MetricsCollector -- ring buffers, aggregates, summary, export."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from tiercache.clock import ManualClock
from tiercache.exceptions import InvalidUsageError
from tiercache.metrics import MetricCategory, MetricsCollector, Snapshot, create_collector
from tiercache.models import MetricsConfig

START = 1_700_000_000.0


# ------------------------------------------------------------------ #
# Recording and ring buffers
# ------------------------------------------------------------------ #


class TestRecord:
    def test_record_is_timestamped(self, collector: MetricsCollector, clock: ManualClock) -> None:
        clock.advance(5)
        record = collector.track_api_call("products/search", 0.12)
        assert record.timestamp == START + 5
        assert collector.history("api", "products/search") == [record]

    def test_buffer_keeps_most_recent_fifty(self, collector: MetricsCollector) -> None:
        for i in range(60):
            collector.track_api_call("x", duration=float(i))

        history = collector.history(MetricCategory.API, "x")
        assert len(history) == 50
        assert [r.duration for r in history] == [float(i) for i in range(10, 60)]

    def test_custom_buffer_size(self, clock: ManualClock) -> None:
        small = MetricsCollector(clock=clock, max_history_per_key=3)
        for i in range(5):
            small.track_render("Header", float(i))
        assert [r.duration for r in small.history("renders", "Header")] == [2.0, 3.0, 4.0]

    def test_keys_are_independent(self, collector: MetricsCollector) -> None:
        collector.track_api_call("a", 0.1)
        collector.track_api_call("b", 0.2)
        assert len(collector.history("api", "a")) == 1
        assert len(collector.history("api", "b")) == 1

    def test_unknown_history_is_empty(self, collector: MetricsCollector) -> None:
        assert collector.history("api", "never") == []

    def test_generic_record(self, collector: MetricsCollector) -> None:
        record = collector.record("web_vitals", "LCP", {"name": "LCP", "value": 2100})
        assert record.category == "web_vitals"
        assert record.value == 2100

    def test_api_record_takes_endpoint_from_key(self, collector: MetricsCollector) -> None:
        record = collector.record(
            "api", "products/list", {"duration": 0.1, "success": True, "cache_hit": False}
        )
        assert record.endpoint == "products/list"
        assert collector.api_stat("products/list").count == 1

    def test_api_record_endpoint_must_match_key(self, collector: MetricsCollector) -> None:
        with pytest.raises(InvalidUsageError, match="does not match key"):
            collector.record(
                "api", "a/b", {"endpoint": "x/y", "duration": 0.1, "success": True}
            )
        assert collector.history("api", "a/b") == []
        assert collector.api_stat("a/b") is None

    def test_unknown_category_rejected(self, collector: MetricsCollector) -> None:
        with pytest.raises(InvalidUsageError, match="Unknown metric category"):
            collector.record("memory", "heap", {"value": 1})

    def test_wrong_fields_rejected(self, collector: MetricsCollector) -> None:
        with pytest.raises(InvalidUsageError):
            collector.record("api", "x", {"endpoint": "x", "duration": 1.0})
        with pytest.raises(InvalidUsageError):
            collector.record("renders", "x", {"component": "x", "duration": 1.0, "extra": 1})

    def test_negative_duration_rejected(self, collector: MetricsCollector) -> None:
        with pytest.raises(InvalidUsageError):
            collector.track_api_call("x", -0.5)

    def test_invalid_buffer_size(self) -> None:
        with pytest.raises(ValueError):
            MetricsCollector(max_history_per_key=0)

    def test_navigation_and_cache_keys(self, collector: MetricsCollector) -> None:
        collector.track_navigation("/home", "/products", 0.3)
        collector.track_cache("products", "get", hit=False)
        assert len(collector.history("navigation", "/home_to_/products")) == 1
        assert len(collector.history("cache", "products_get")) == 1


# ------------------------------------------------------------------ #
# Aggregates
# ------------------------------------------------------------------ #


class TestAggregates:
    def test_api_stat_matches_calls(self, collector: MetricsCollector) -> None:
        collector.track_api_call("x", 0.1, success=True, cache_hit=True)
        collector.track_api_call("x", 0.3, success=False)
        collector.track_api_call("x", 0.2, success=True)
        collector.track_api_call("x", 0.2, success=True)

        stat = collector.api_stat("x")
        assert stat is not None
        assert stat.count == 4
        assert stat.success_count + stat.error_count == stat.count
        assert stat.success_rate == pytest.approx(75.0)
        assert stat.cache_hit_rate == pytest.approx(25.0)
        assert stat.average_duration * stat.count == pytest.approx(stat.total_duration)
        assert stat.average_duration == pytest.approx(0.2)

    def test_aggregates_outlive_the_ring_buffer(self, collector: MetricsCollector) -> None:
        for _ in range(60):
            collector.track_api_call("x", 1.0)
        stat = collector.api_stat("x")
        assert stat is not None
        assert stat.count == 60
        assert len(collector.history("api", "x")) == 50

    def test_cache_stat(self, collector: MetricsCollector) -> None:
        for hit in (True, True, False, True):
            collector.track_cache("products", "get", hit=hit)
        stat = collector.cache_stat("products_get")
        assert stat is not None
        assert (stat.hits, stat.misses, stat.total_operations) == (3, 1, 4)
        assert stat.hit_rate == pytest.approx(75.0)

    def test_unknown_stat_is_none(self, collector: MetricsCollector) -> None:
        assert collector.api_stat("nope") is None
        assert collector.cache_stat("nope") is None


# ------------------------------------------------------------------ #
# Summary
# ------------------------------------------------------------------ #


class TestSummary:
    def test_empty(self, collector: MetricsCollector) -> None:
        summary = collector.get_summary()
        assert summary.api == []
        assert summary.web_vitals == {}
        assert summary.cache == []
        assert summary.navigation == []
        assert summary.renders == []

    def test_every_category(self, collector: MetricsCollector) -> None:
        collector.track_api_call("products/search", 0.2)
        collector.track_api_call("brands/list", 0.4, success=False)
        collector.track_web_vital("LCP", 2500)
        collector.track_web_vital("LCP", 1800)
        collector.track_cache("products", "get", hit=True)
        collector.track_navigation("/", "/cart", 0.2)
        collector.track_navigation("/", "/cart", 0.4)
        collector.track_render("ProductCard", 0.01)

        summary = collector.get_summary()

        assert [a.endpoint for a in summary.api] == ["brands/list", "products/search"]
        assert summary.api[0].success_rate == 0.0
        assert summary.web_vitals == {"LCP": 1800}
        assert summary.cache[0].key == "products_get"
        assert summary.cache[0].hit_rate == 100.0
        assert summary.navigation[0].route == "/_to_/cart"
        assert summary.navigation[0].total_navigations == 2
        assert summary.navigation[0].average_duration == pytest.approx(0.3)
        assert summary.renders[0].component == "ProductCard"
        assert summary.renders[0].renders == 1

    def test_summary_serialises_rates(self, collector: MetricsCollector) -> None:
        collector.track_api_call("x", 0.5)
        data = collector.get_summary().model_dump(mode="json")
        assert data["api"][0]["success_rate"] == 100.0
        assert data["api"][0]["average_duration"] == 0.5


# ------------------------------------------------------------------ #
# Export
# ------------------------------------------------------------------ #


class TestExport:
    def test_export_shape(self, collector: MetricsCollector) -> None:
        collector.track_api_call("x", 0.1)
        collector.track_render("Header", 0.02)

        data = json.loads(collector.export_json())

        assert data["timestamp"] == START
        assert data["context_label"] == "tiercache"
        assert set(data["metrics"]) == {c.value for c in MetricCategory}
        assert data["metrics"]["api"]["x"][0]["duration"] == 0.1
        assert data["metrics"]["renders"]["Header"][0]["component"] == "Header"
        assert data["metrics"]["cache"] == {}

    def test_export_json_is_stable(self, collector: MetricsCollector) -> None:
        collector.track_api_call("b", 0.1)
        collector.track_api_call("a", 0.1)
        assert collector.export_json() == collector.export_json()
        assert collector.export_json().endswith("\n")

    def test_write_export(self, collector: MetricsCollector, tmp_path: Path) -> None:
        collector.track_api_call("x", 0.1)
        target = collector.write_export(tmp_path / "out" / "metrics.json")
        assert json.loads(target.read_text())["metrics"]["api"]["x"][0]["endpoint"] == "x"

    def test_from_snapshot_rebuilds_aggregates(self, collector: MetricsCollector) -> None:
        collector.track_api_call("x", 0.1, success=False)
        collector.track_api_call("x", 0.3)
        collector.track_cache("brands", "get", hit=False)

        snapshot = Snapshot.model_validate_json(collector.export_json())
        rebuilt = MetricsCollector.from_snapshot(snapshot)

        stat = rebuilt.api_stat("x")
        assert stat is not None
        assert (stat.count, stat.error_count) == (2, 1)
        assert rebuilt.cache_stat("brands_get").misses == 1
        assert rebuilt.context_label == "tiercache"
        assert rebuilt.history("api", "x") == collector.history("api", "x")


# ------------------------------------------------------------------ #
# Housekeeping
# ------------------------------------------------------------------ #


class TestHousekeeping:
    def test_prune_drops_old_records(self, collector: MetricsCollector, clock: ManualClock) -> None:
        collector.track_api_call("old", 0.1)
        collector.track_api_call("mixed", 0.1)
        clock.advance(100)
        collector.track_api_call("mixed", 0.2)

        removed = collector.prune_older_than(50)

        assert removed == 2
        assert collector.history("api", "old") == []
        assert collector.api_stat("old") is None
        assert [r.duration for r in collector.history("api", "mixed")] == [0.2]
        assert collector.api_stat("mixed").count == 2

    def test_prune_default_age(self, collector: MetricsCollector, clock: ManualClock) -> None:
        collector.track_cache("products", "get")
        clock.advance(24 * 60 * 60 + 1)
        assert collector.prune_older_than() == 1
        assert collector.cache_stat("products_get") is None

    def test_prune_nothing(self, collector: MetricsCollector) -> None:
        collector.track_render("Header", 0.01)
        assert collector.prune_older_than(60) == 0

    def test_reset(self, collector: MetricsCollector) -> None:
        collector.track_api_call("x", 0.1)
        collector.track_cache("products", "get")
        collector.reset()
        assert collector.history("api", "x") == []
        assert collector.api_stat("x") is None
        assert collector.get_summary().cache == []


def _stepping_timer(step: float):
    state = {"now": 0.0}

    def timer() -> float:
        state["now"] += step
        return state["now"]

    return timer


class TestTimedBlocks:
    def test_timed_render(self, clock: ManualClock) -> None:
        collector = MetricsCollector(clock=clock, timer=_stepping_timer(0.05))
        with collector.timed_render("ProductGrid"):
            pass
        [record] = collector.history("renders", "ProductGrid")
        assert record.duration == pytest.approx(0.05)

    def test_timed_navigation(self, clock: ManualClock) -> None:
        collector = MetricsCollector(clock=clock, timer=_stepping_timer(0.3))
        with collector.timed_navigation("/", "/cart"):
            pass
        summary = collector.get_summary()
        assert summary.navigation[0].route == "/_to_/cart"
        assert summary.navigation[0].average_duration == pytest.approx(0.3)

    def test_failed_block_is_not_recorded(self, collector: MetricsCollector) -> None:
        with pytest.raises(RuntimeError):
            with collector.timed_render("Broken"):
                raise RuntimeError("template error")
        assert collector.history("renders", "Broken") == []


class TestCreateCollector:
    def test_from_config(self, clock: ManualClock) -> None:
        config = MetricsConfig(max_history_per_key=5, context_label="storefront", max_age_seconds=60)
        collector = create_collector(config, clock=clock)
        assert collector.max_history_per_key == 5
        assert collector.context_label == "storefront"
        assert collector.max_age_seconds == 60

"""Shared test fixtures for tiercache.

Provides a manually stepped clock, throwaway store directories, an
isolated XDG config environment, and resets the global output manager
between tests.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from tiercache.cache import CacheFacade, create_cache
from tiercache.clock import ManualClock
from tiercache.metrics import MetricsCollector
from tiercache.models import CacheConfig
from tiercache.output import reset_output


START = 1_700_000_000.0


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Forget the global OutputManager after every test.

    The manager caches sys.stdout/sys.stderr when it is created; CliRunner
    swaps those streams, so a stale manager would write to closed files.
    """
    yield
    reset_output()


@pytest.fixture
def clock() -> ManualClock:
    """A clock frozen at a fixed epoch timestamp until advanced."""
    return ManualClock(START)


@pytest.fixture
def store_dir(tmp_path: Path) -> Path:
    """Directory for a persistent tier's diskcache store."""
    return tmp_path / "store"


@pytest.fixture
def collector(clock: ManualClock) -> MetricsCollector:
    return MetricsCollector(clock=clock)


@pytest.fixture
def cache(store_dir: Path, clock: ManualClock, collector: MetricsCollector) -> CacheFacade:
    """A two-tier facade with default capacities on a temp store."""
    facade = create_cache(store_dir, CacheConfig(), clock=clock, metrics=collector)
    yield facade
    facade.close()


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point XDG config/cache/data dirs into tmp_path and clear TIERCACHE_* vars."""
    monkeypatch.setattr("tiercache.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    for var in ("TIERCACHE_CACHE_DIR", "TIERCACHE_CONTEXT_LABEL"):
        monkeypatch.delenv(var, raising=False)
    return tmp_path

"""Tests for metric metadata sources and the key-partitioned lock behind them."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from rulesense.checker.metadata import CachedMetadataSource, MetadataSource, StaticMetadataSource
from rulesense.keylock import KeyLock


class CountingSource:
    """Slow metadata source that records how often each metric is asked for."""

    def __init__(self) -> None:
        self.calls: dict[str, int] = {}
        self._lock = threading.Lock()

    def metric_type(self, name: str) -> str | None:
        with self._lock:
            self.calls[name] = self.calls.get(name, 0) + 1
        time.sleep(0.05)
        return "counter" if name.endswith("_total") else None


# =============================================================================
# KeyLock
# =============================================================================


class TestKeyLock:
    def test_context_manager(self) -> None:
        locks = KeyLock()
        with locks.locked("foo"):
            assert len(locks) == 1
        assert len(locks) == 0

    def test_same_key_is_exclusive(self) -> None:
        locks = KeyLock()
        entered = threading.Event()

        def worker() -> None:
            with locks.locked("foo"):
                entered.set()

        locks.lock("foo")
        thread = threading.Thread(target=worker)
        thread.start()
        assert not entered.wait(0.1)
        locks.unlock("foo")
        assert entered.wait(2)
        thread.join(2)
        assert len(locks) == 0

    def test_different_keys_run_in_parallel(self) -> None:
        locks = KeyLock()
        entered = threading.Event()

        def worker() -> None:
            with locks.locked("bar"):
                entered.set()

        with locks.locked("foo"):
            thread = threading.Thread(target=worker)
            thread.start()
            assert entered.wait(2)
            thread.join(2)

    def test_unlock_of_unlocked_key(self) -> None:
        with pytest.raises(RuntimeError, match="unlock of unlocked key"):
            KeyLock().unlock("foo")


# =============================================================================
# Metadata sources
# =============================================================================


class TestStaticMetadataSource:
    def test_lookup(self) -> None:
        source = StaticMetadataSource({"errors_total": "Counter"})
        assert source.metric_type("errors_total") == "counter"
        assert source.metric_type("missing") is None
        assert len(source) == 1

    def test_implements_protocol(self) -> None:
        assert isinstance(StaticMetadataSource(), MetadataSource)


class TestCachedMetadataSource:
    def test_repeated_lookups_are_cached(self) -> None:
        inner = CountingSource()
        source = CachedMetadataSource(inner)
        assert source.metric_type("errors_total") == "counter"
        assert source.metric_type("errors_total") == "counter"
        assert inner.calls == {"errors_total": 1}
        assert (source.hits, source.misses) == (1, 1)

    def test_unknown_metrics_are_cached_too(self) -> None:
        inner = CountingSource()
        source = CachedMetadataSource(inner)
        assert source.metric_type("temperature") is None
        assert source.metric_type("temperature") is None
        assert inner.calls == {"temperature": 1}

    def test_concurrent_lookups_hit_the_source_once(self) -> None:
        inner = CountingSource()
        source = CachedMetadataSource(inner)
        names = ["errors_total"] * 8 + ["requests_total"] * 8
        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(source.metric_type, names))
        assert results == ["counter"] * 16
        assert inner.calls == {"errors_total": 1, "requests_total": 1}
        assert source.misses == 2
        assert source.hits == 14

    def test_clear(self) -> None:
        inner = CountingSource()
        source = CachedMetadataSource(inner)
        source.metric_type("errors_total")
        source.clear()
        source.metric_type("errors_total")
        assert inner.calls == {"errors_total": 2}

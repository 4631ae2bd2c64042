"""Tests for Memoization Cache."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from app.core.scheduling.cache import MemoizationCache


class TestMemoizationCache:
    """Test MemoizationCache."""

    @pytest.fixture
    def cache(self):
        return MemoizationCache(name="test")

    def test_make_key(self):
        assert MemoizationCache.make_key("compatibility", "t1", "c1") == ("compatibility", "t1", "c1")

    def test_keys_with_separators_do_not_collide(self):
        """Test ids containing underscores keep distinct keys."""
        first = MemoizationCache.make_key("compatibility", "a_b", "c")
        second = MemoizationCache.make_key("compatibility", "a", "b_c")

        assert first != second

    def test_underscored_ids_cached_separately(self, cache):
        first = cache.get_or_compute(MemoizationCache.make_key("compatibility", "a_b", "c"), lambda: 0.1)
        second = cache.get_or_compute(MemoizationCache.make_key("compatibility", "a", "b_c"), lambda: 0.9)

        assert (first, second) == (0.1, 0.9)
        assert cache.stats() == {"size": 2, "hits": 0, "misses": 2}

    def test_get_or_compute_computes_once(self, cache):
        """Test repeated lookups reuse the first result."""
        calls = []

        def compute():
            calls.append(1)
            return 0.75

        first = cache.get_or_compute("k", compute)
        second = cache.get_or_compute("k", compute)

        assert first == second == 0.75
        assert len(calls) == 1
        assert cache.stats() == {"size": 1, "hits": 1, "misses": 1}

    def test_get_and_set(self, cache):
        assert cache.get("missing") is None
        assert cache.get("missing", 0.0) == 0.0

        cache.set("k", 1)

        assert cache.get("k") == 1
        assert "k" in cache
        assert len(cache) == 1

    def test_falsy_values_are_cached(self, cache):
        """Test a 0.0 score counts as a hit."""
        calls = []

        def compute():
            calls.append(1)
            return 0.0

        cache.get_or_compute("k", compute)
        cache.get_or_compute("k", compute)

        assert len(calls) == 1

    def test_failed_compute_not_stored(self, cache):
        def compute():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            cache.get_or_compute("k", compute)

        assert "k" not in cache

    def test_clear(self, cache):
        """Test clear drops entries and counters."""
        cache.get_or_compute("a", lambda: 1)
        cache.get_or_compute("a", lambda: 1)

        cache.clear()

        assert len(cache) == 0
        assert cache.stats() == {"size": 0, "hits": 0, "misses": 0}

    def test_recompute_after_clear(self, cache):
        calls = []

        def compute():
            calls.append(1)
            return len(calls)

        cache.get_or_compute("k", compute)
        cache.clear()

        assert cache.get_or_compute("k", compute) == 2

    def test_concurrent_access(self, cache):
        """Test parallel readers see a single stored value."""
        barrier = threading.Barrier(8)

        def worker(i):
            barrier.wait()
            return cache.get_or_compute("shared", lambda: i)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(worker, range(8)))

        assert len(set(results)) == 1
        assert cache.get("shared") == results[0]
        assert len(cache) == 1

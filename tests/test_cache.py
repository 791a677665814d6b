import threading
import time

import numpy as np
import pytest

from assessmatch.cache import EmbeddingCache
from assessmatch.errors import EmbeddingUnavailable

from .conftest import CountingProvider


class FakeClock:

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def wait_until(condition, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not condition():
        assert time.monotonic() < deadline, "condition not reached"
        time.sleep(0.001)


@pytest.fixture
def clock():
    return FakeClock()


def test_second_lookup_is_a_hit(provider):
    cache = EmbeddingCache(provider, ttl_seconds=60, max_entries=10)
    first = cache.get_or_compute("java developer")
    second = cache.get_or_compute("java developer")
    assert provider.texts_embedded == 1
    assert np.array_equal(first, second)
    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1


def test_cold_and_warm_vectors_are_identical(provider):
    cache = EmbeddingCache(provider, ttl_seconds=60, max_entries=10)
    assert not provider.is_warm
    cold = cache.get_or_compute("numerical data analyst")
    assert provider.is_warm
    cache.clear()
    warm = cache.get_or_compute("numerical data analyst")
    assert cold.tobytes() == warm.tobytes()
    assert provider.load_calls == 1


def test_entries_expire_after_ttl(provider, clock):
    cache = EmbeddingCache(provider, ttl_seconds=60, max_entries=10, clock=clock)
    cache.get_or_compute("sql")
    clock.advance(59)
    assert "sql" in cache
    cache.get_or_compute("sql")
    assert provider.texts_embedded == 1

    clock.advance(1)
    assert "sql" not in cache
    cache.get_or_compute("sql")
    assert provider.texts_embedded == 2
    assert cache.stats()["expirations"] == 1


def test_least_recently_used_entry_is_evicted(provider):
    cache = EmbeddingCache(provider, ttl_seconds=60, max_entries=2)
    cache.get_or_compute("java")
    cache.get_or_compute("python")
    cache.get_or_compute("java")
    cache.get_or_compute("sql")

    assert "java" in cache
    assert "sql" in cache
    assert "python" not in cache
    assert len(cache) == 2
    assert cache.stats()["evictions"] == 1


def test_expired_entry_is_dropped_before_lru_bookkeeping(provider, clock):
    cache = EmbeddingCache(provider, ttl_seconds=10, max_entries=2, clock=clock)
    cache.get_or_compute("java")
    clock.advance(5)
    cache.get_or_compute("python")
    clock.advance(6)
    # "java" is expired, so touching it recomputes instead of refreshing it.
    cache.get_or_compute("java")
    stats = cache.stats()
    assert stats["expirations"] == 1
    assert stats["evictions"] == 0
    assert provider.texts_embedded == 3


def test_proactive_evict_removes_expired(provider, clock):
    cache = EmbeddingCache(provider, ttl_seconds=10, max_entries=10, clock=clock)
    cache.get_or_compute("java")
    cache.get_or_compute("python")
    clock.advance(10)
    assert cache.proactive_evict() == 2
    assert len(cache) == 0


def test_concurrent_misses_share_one_computation():
    gate = threading.Event()
    provider = CountingProvider(gate=gate)
    cache = EmbeddingCache(provider, ttl_seconds=60, max_entries=10)
    callers = 8
    results = [None] * callers
    started = threading.Barrier(callers + 1)

    def call(index):
        started.wait()
        results[index] = cache.get_or_compute("python data developer")

    threads = [threading.Thread(target=call, args=(i,)) for i in range(callers)]
    for thread in threads:
        thread.start()
    started.wait()
    # Let every caller register before the single computation finishes.
    wait_until(lambda: cache.stats()["misses"] + cache.stats()["coalesced"] == callers)
    gate.set()
    for thread in threads:
        thread.join(timeout=5)

    assert provider.texts_embedded == 1
    assert all(np.array_equal(r, results[0]) for r in results)
    stats = cache.stats()
    assert stats["misses"] == 1
    assert stats["coalesced"] == callers - 1
    assert stats["in_flight"] == 0


def test_failed_computation_reaches_every_waiter_and_is_not_cached():
    gate = threading.Event()
    provider = CountingProvider(gate=gate, fail=True)
    cache = EmbeddingCache(provider, ttl_seconds=60, max_entries=10)
    errors = []

    def call():
        try:
            cache.get_or_compute("java")
        except EmbeddingUnavailable as e:
            errors.append(e)

    threads = [threading.Thread(target=call) for _ in range(3)]
    for thread in threads:
        thread.start()
    wait_until(lambda: cache.stats()["misses"] + cache.stats()["coalesced"] == 3)
    gate.set()
    for thread in threads:
        thread.join(timeout=5)

    assert len(errors) == 3
    assert provider.batch_calls == 1
    assert "java" not in cache
    assert cache.stats()["in_flight"] == 0


def test_batch_lookup_dedupes_and_uses_one_call(provider):
    cache = EmbeddingCache(provider, ttl_seconds=60, max_entries=10)
    cache.get_or_compute("java")
    vectors = cache.get_or_compute_many(["java", "python", "sql", "python"])
    assert len(vectors) == 4
    assert np.array_equal(vectors[1], vectors[3])
    assert provider.batch_calls == 2
    assert provider.texts_embedded == 3


def test_keys_are_namespaced_by_provider():
    cache_a = EmbeddingCache(CountingProvider(name="a"), ttl_seconds=60, max_entries=10)
    cache_b = EmbeddingCache(CountingProvider(name="b"), ttl_seconds=60, max_entries=10)
    assert cache_a.key_for("java") != cache_b.key_for("java")


@pytest.mark.parametrize("ttl, max_entries", [(0, 10), (10, 0)])
def test_invalid_limits(provider, ttl, max_entries):
    with pytest.raises(ValueError):
        EmbeddingCache(provider, ttl_seconds=ttl, max_entries=max_entries)

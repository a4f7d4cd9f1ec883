"""
Unit tests for the TTL cache.
"""

import threading

from fx_decision.analytics.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_get_returns_value_before_expiry():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=10, clock=clock)
    cache.set('k', 42)

    clock.now += 9.9
    assert cache.get('k') == 42
    assert cache.hits == 1


def test_entry_expires_after_ttl():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=10, clock=clock)
    cache.set('k', 42)

    clock.now += 10
    assert cache.get('k') is None
    assert 'k' not in cache
    assert len(cache) == 0


def test_oldest_entry_evicted_when_full():
    cache = TTLCache(ttl_seconds=60, max_entries=2)
    cache.set('a', 1)
    cache.set('b', 2)
    cache.set('c', 3)

    assert cache.get('a') is None
    assert cache.get('b') == 2
    assert cache.get('c') == 3


def test_evict_and_evict_expired():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=5, clock=clock)
    cache.set('a', 1)
    assert cache.evict('a') is True
    assert cache.evict('a') is False

    cache.set('b', 2)
    cache.set('c', 3)
    clock.now += 6
    assert cache.evict_expired() == 2


def test_concurrent_set_and_get():
    cache = TTLCache(ttl_seconds=60, max_entries=10_000)
    errors = []

    def worker(offset: int):
        try:
            for i in range(500):
                key = f"{offset}:{i}"
                cache.set(key, i)
                assert cache.get(key) == i
        except AssertionError as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(cache) == 4000

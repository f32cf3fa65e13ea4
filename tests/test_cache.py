"""
Tests for the read-through TTL cache and the retry wrapper.
"""

import asyncio
import logging

import pytest

from repo_health_guard.cache import CacheEntry, TTLCache, is_entry_fresh, with_retry
from repo_health_guard.errors import RetryExhaustedError


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class FlakyProducer:
    """Fails ``failures`` times, then returns ``value``."""

    def __init__(self, failures, value="ok"):
        self.failures = failures
        self.value = value
        self.calls = 0
        self.errors = []

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            error = ConnectionError(f"attempt {self.calls} failed")
            self.errors.append(error)
            raise error
        return self.value


def test_entry_is_fresh_strictly_before_ttl():
    entry = CacheEntry(created_at=100.0, ttl=10.0, value="x")
    assert is_entry_fresh(entry, 109.9)
    assert not is_entry_fresh(entry, 110.0)


def test_retry_returns_success_after_failures():
    """A producer failing N-1 times then succeeding is invoked exactly N times."""
    producer = FlakyProducer(failures=2)
    sleep = SleepRecorder()

    result = asyncio.run(with_retry(producer, attempts=3, base_delay=0.3, sleep=sleep))

    assert result == "ok"
    assert producer.calls == 3
    assert sleep.delays == pytest.approx([0.3, 0.6])


def test_retry_surfaces_last_error():
    """A producer failing N times surfaces the final underlying error."""
    producer = FlakyProducer(failures=3)
    sleep = SleepRecorder()

    with pytest.raises(ConnectionError) as exc_info:
        asyncio.run(with_retry(producer, attempts=3, base_delay=0.3, sleep=sleep))

    assert exc_info.value is producer.errors[-1]
    assert producer.calls == 3
    # No wait after the final attempt
    assert sleep.delays == pytest.approx([0.3, 0.6])


def test_retry_backoff_doubles_without_jitter(caplog):
    producer = FlakyProducer(failures=4)
    sleep = SleepRecorder()

    with caplog.at_level(logging.DEBUG, logger="repo_health_guard.cache"):
        result = asyncio.run(with_retry(producer, attempts=5, base_delay=0.5, sleep=sleep))

    assert result == "ok"
    assert sleep.delays == [0.5, 1.0, 2.0, 4.0]
    assert "attempt 1 failed" in caplog.text


def test_retry_without_attempts_raises_generic_failure():
    producer = FlakyProducer(failures=0)

    with pytest.raises(RetryExhaustedError, match="request failed"):
        asyncio.run(with_retry(producer, attempts=0, sleep=SleepRecorder()))
    assert producer.calls == 0


def test_get_or_compute_serves_cached_value_within_ttl():
    clock = FakeClock()
    cache = TTLCache(clock=clock, sleep=SleepRecorder())
    producer = FlakyProducer(failures=0, value={"stars": 1})

    async def run():
        first = await cache.get_or_compute("repo:foo/bar", producer, ttl=300)
        clock.now += 299
        second = await cache.get_or_compute("repo:foo/bar", producer, ttl=300)
        return first, second

    first, second = asyncio.run(run())

    assert first == second == {"stars": 1}
    assert producer.calls == 1


def test_get_or_compute_refreshes_after_ttl():
    clock = FakeClock()
    cache = TTLCache(clock=clock, sleep=SleepRecorder())
    producer = FlakyProducer(failures=0)

    async def run():
        await cache.get_or_compute("commits:foo/bar", producer, ttl=180)
        clock.now += 180
        await cache.get_or_compute("commits:foo/bar", producer, ttl=180)

    asyncio.run(run())

    assert producer.calls == 2


def test_get_or_compute_does_not_store_failures():
    cache = TTLCache(retry_attempts=2, clock=FakeClock(), sleep=SleepRecorder())
    failing = FlakyProducer(failures=2)

    with pytest.raises(ConnectionError):
        asyncio.run(cache.get_or_compute("alerts:foo/bar", failing, ttl=180))

    assert cache.get("alerts:foo/bar") is None
    assert len(cache) == 0


def test_get_or_compute_retries_through_the_cache():
    sleep = SleepRecorder()
    cache = TTLCache(retry_attempts=3, retry_base_delay=0.3, clock=FakeClock(), sleep=sleep)
    producer = FlakyProducer(failures=1, value=[1, 2, 3])

    result = asyncio.run(cache.get_or_compute("commits:foo/bar", producer, ttl=180))

    assert result == [1, 2, 3]
    assert cache.get("commits:foo/bar") == [1, 2, 3]
    assert sleep.delays == pytest.approx([0.3])


def test_set_overwrites_existing_entry():
    cache = TTLCache(clock=FakeClock())
    cache.set("repo:foo/bar", "old", ttl=60)
    cache.set("repo:foo/bar", "new", ttl=60)

    assert cache.get("repo:foo/bar") == "new"
    assert len(cache) == 1


def test_clear_by_prefix():
    cache = TTLCache(clock=FakeClock())
    cache.set("repo:foo/bar", 1, ttl=60)
    cache.set("commits:foo/bar", 2, ttl=60)
    cache.set("commits:foo/baz", 3, ttl=60)

    assert cache.clear("commits:") == 2
    assert cache.get("repo:foo/bar") == 1
    assert cache.clear() == 1
    assert len(cache) == 0


def test_stats_counts_expired_entries():
    clock = FakeClock()
    cache = TTLCache(clock=clock)
    cache.set("repo:foo/bar", 1, ttl=300)
    cache.set("alerts:foo/bar", [], ttl=180)

    clock.now += 200

    assert cache.stats() == {
        "total_entries": 2,
        "valid_entries": 1,
        "expired_entries": 1,
    }

"""
In-process read-through cache for Repository Health Guard.

Memoizes idempotent GET-style fetches with a per-entry TTL and retries the
underlying producer with exponential backoff.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Generic, NamedTuple, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from repo_health_guard.errors import RetryExhaustedError

T = TypeVar("T")

logger = logging.getLogger(__name__)

DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_BASE_DELAY = 0.3

Producer = Callable[[], Awaitable[T]]
Sleep = Callable[[float], Awaitable[None]]


class CacheEntry(NamedTuple, Generic[T]):
    created_at: float
    ttl: float
    value: T


def is_entry_fresh(entry: CacheEntry[Any], now: float) -> bool:
    """
    Check if a cache entry is still valid.

    Args:
        entry: Cached entry.
        now: Current time, on the same clock as ``entry.created_at``.

    Returns:
        True while ``now - created_at`` is strictly less than the entry TTL.
    """
    return now - entry.created_at < entry.ttl


async def with_retry(
    producer: Producer[T],
    attempts: int = DEFAULT_RETRY_ATTEMPTS,
    base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """
    Await ``producer`` until it succeeds or the attempts run out.

    The delay after the n-th failure (0-based) is ``base_delay * 2**n``; no
    delay follows the last attempt.

    Args:
        producer: Zero-argument coroutine function.
        attempts: Maximum number of invocations.
        base_delay: Initial backoff delay in seconds.
        sleep: Awaitable sleep function (injectable for tests).

    Returns:
        The first successful result.

    Raises:
        Exception: The last failure raised by ``producer``, unchanged.
        RetryExhaustedError: If no attempt was made.
    """
    if attempts <= 0:
        raise RetryExhaustedError("request failed")

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=base_delay, exp_base=2),
        retry=retry_if_exception_type(Exception),
        before_sleep=before_sleep_log(logger, logging.DEBUG),
        sleep=sleep,
        reraise=True,
    ):
        with attempt:
            return await producer()

    raise RetryExhaustedError("request failed")


class TTLCache:
    """
    Read-through cache keyed by strings such as ``repo:{owner}/{repo}``.

    Entries are only evicted lazily (stale entries are recomputed on read) or
    overwritten on refresh. Concurrent misses for the same key each run the
    producer; requests are not coalesced.
    """

    def __init__(
        self,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self._clock = clock
        self._sleep = sleep
        self._entries: dict[str, CacheEntry[Any]] = {}

    def get(self, key: str) -> Any | None:
        """Return the fresh value stored under ``key``, or None."""
        entry = self._entries.get(key)
        if entry is not None and is_entry_fresh(entry, self._clock()):
            return entry.value
        return None

    def set(self, key: str, value: Any, ttl: float) -> None:
        self._entries[key] = CacheEntry(created_at=self._clock(), ttl=ttl, value=value)

    async def get_or_compute(self, key: str, producer: Producer[T], ttl: float) -> T:
        """
        Return the cached value for ``key`` or compute it through the retry policy.

        Args:
            key: Cache key.
            producer: Zero-argument coroutine function producing the value.
            ttl: Time to live of the stored value in seconds.

        Returns:
            Cached or freshly produced value.

        Raises:
            Exception: Whatever ``producer`` raised on its last attempt.
        """
        entry = self._entries.get(key)
        now = self._clock()
        if entry is not None and is_entry_fresh(entry, now):
            return entry.value

        value = await with_retry(
            producer,
            attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            sleep=self._sleep,
        )
        # Timestamp the entry with the request start, like a response Date header
        self._entries[key] = CacheEntry(created_at=now, ttl=ttl, value=value)
        return value

    def clear(self, prefix: str | None = None) -> int:
        """
        Drop cached entries.

        Args:
            prefix: Only drop keys starting with this prefix (e.g. ``"commits:"``).

        Returns:
            Number of entries removed.
        """
        if prefix is None:
            cleared = len(self._entries)
            self._entries.clear()
            return cleared

        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def stats(self) -> dict[str, int]:
        """Get cache statistics: total, valid and expired entry counts."""
        now = self._clock()
        valid = sum(1 for entry in self._entries.values() if is_entry_fresh(entry, now))
        return {
            "total_entries": len(self._entries),
            "valid_entries": valid,
            "expired_entries": len(self._entries) - valid,
        }

    def __len__(self) -> int:
        return len(self._entries)

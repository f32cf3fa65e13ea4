"""
Fair counting semaphore bounding concurrent dependency analyses.
"""

import asyncio
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

DEFAULT_MAX_PERMITS = 4

Release = Callable[[], None]


class AnalysisSemaphore:
    """
    FIFO semaphore with immediate hand-off.

    ``acquire()`` returns a release callback. Releasing while waiters are
    queued passes the permit straight to the oldest waiter, so ``in_flight``
    never dips in between and late arrivals cannot overtake the queue.
    """

    def __init__(self, max_permits: int = DEFAULT_MAX_PERMITS):
        if max_permits < 1:
            raise ValueError("max_permits must be at least 1")
        self.max_permits = max_permits
        self._counter = 0
        self._queue: deque[asyncio.Future[Release]] = deque()

    @property
    def in_flight(self) -> int:
        """Number of permits currently held."""
        return self._counter

    @property
    def waiting(self) -> int:
        """Number of acquirers queued for a permit."""
        return sum(1 for waiter in self._queue if not waiter.done())

    async def acquire(self) -> Release:
        if self._counter < self.max_permits and not self.waiting:
            self._counter += 1
            return self._make_release()

        waiter: asyncio.Future[Release] = asyncio.get_running_loop().create_future()
        self._queue.append(waiter)
        try:
            return await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Permit was handed over just as we were cancelled: pass it on
                waiter.result()()
            raise

    def _make_release(self) -> Release:
        released = False

        def release() -> None:
            nonlocal released
            if released:
                return
            released = True
            self._release_permit()

        return release

    def _release_permit(self) -> None:
        while self._queue:
            waiter = self._queue.popleft()
            if waiter.done():
                # Cancelled while queued
                continue
            # Counter stays the same: the permit moves to the waiter
            waiter.set_result(self._make_release())
            return
        self._counter -= 1

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[None]:
        """Hold one permit for the duration of an ``async with`` block."""
        release = await self.acquire()
        try:
            yield
        finally:
            release()

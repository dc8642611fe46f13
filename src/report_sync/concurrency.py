"""
Concurrency limiter for remote calls.

An asyncio semaphore with strict FIFO hand-off: release() gives the freed
permit straight to the oldest waiter instead of returning it to the pool,
so held permits never exceed the configured maximum and a late arrival can
never overtake a waiter.
"""

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable

from .errors import RunAbortedError

logger = logging.getLogger(__name__)


class Semaphore:
    """
    Counting semaphore for coroutines.

    Usage:
        limiter = Semaphore(3)
        async with limiter:
            await service.submit(records)

        task_id = await limiter.execute(lambda: service.submit(records))
    """

    def __init__(self, permits: int):
        if permits < 1:
            raise ValueError(f"permits must be >= 1, got {permits}")
        self._permits = permits
        self._available = permits
        self._waiters: deque[asyncio.Future] = deque()
        self._aborted = False
        self._peak_held = 0

    @property
    def permits(self) -> int:
        return self._permits

    @property
    def available(self) -> int:
        return self._available

    @property
    def held(self) -> int:
        return self._permits - self._available

    @property
    def waiting(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    @property
    def peak_held(self) -> int:
        """Highest number of simultaneously held permits seen so far"""
        return self._peak_held

    @property
    def aborted(self) -> bool:
        return self._aborted

    def _take(self) -> None:
        self._available -= 1
        self._peak_held = max(self._peak_held, self.held)

    async def acquire(self) -> None:
        """
        Wait for a permit.

        Raises:
            RunAbortedError: if the limiter was aborted
        """
        if self._aborted:
            raise RunAbortedError("Concurrency limiter aborted")

        if self._available > 0 and not self.waiting:
            self._take()
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled() and waiter.exception() is None:
                # The permit was handed to us just before cancellation
                self.release()
            else:
                self._discard(waiter)
            raise

    def release(self) -> None:
        """
        Return a permit, handing it to the oldest waiter if there is one.

        Raises:
            RuntimeError: if no permit is currently held
        """
        if self.held <= 0:
            raise RuntimeError("Semaphore released more times than acquired")

        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                # Permit moves to the waiter without passing through the pool
                waiter.set_result(None)
                return

        self._available += 1

    async def execute(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        """Run operation while holding a permit; the permit is always returned"""
        async with self:
            return await operation()

    def abort(self) -> None:
        """Fail every waiter and refuse new acquisitions."""
        self._aborted = True
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_exception(RunAbortedError("Concurrency limiter aborted"))
        logger.debug(f"Semaphore aborted with {self.held} permit(s) still held")

    def _discard(self, waiter: asyncio.Future) -> None:
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass

    async def __aenter__(self) -> "Semaphore":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        return (
            f"Semaphore(permits={self._permits}, held={self.held}, "
            f"waiting={self.waiting}, aborted={self._aborted})"
        )

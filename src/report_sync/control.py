"""
Cooperative pause / resume / abort for a pipeline run.

Workers call ``await handle.checkpoint()`` before every remote request.
A paused run parks there; an aborted run raises RunAbortedError there.
Requests already on the wire are not recalled, only their results ignored.
"""

import asyncio
import logging
from typing import Callable, Optional

from .errors import RunAbortedError

logger = logging.getLogger(__name__)


class CancellationHandle:
    """
    Caller-facing control for one run.

    Args:
        on_change: Called with "paused", "resumed" or "aborted" after each
            effective state change (the pipeline publishes progress from it)
    """

    def __init__(self, on_change: Optional[Callable[[str], None]] = None):
        self._running = asyncio.Event()
        self._running.set()
        self._aborted = asyncio.Event()
        self._finished = False
        self._on_change = on_change
        self.abort_reason: Optional[str] = None

    @property
    def is_paused(self) -> bool:
        return not self._running.is_set() and not self._aborted.is_set()

    @property
    def is_aborted(self) -> bool:
        return self._aborted.is_set()

    def pause(self) -> None:
        """Stop issuing new remote calls; in-flight calls finish normally"""
        if self._finished or self.is_aborted or self.is_paused:
            return
        self._running.clear()
        logger.info("Processing paused by user")
        self._notify("paused")

    def resume(self) -> None:
        if self._finished or self.is_aborted or not self.is_paused:
            return
        self._running.set()
        logger.info("Processing resumed")
        self._notify("resumed")

    def abort(self, reason: str = "Operation aborted by user") -> None:
        """Abort the run; idempotent"""
        if self._finished or self.is_aborted:
            return
        self.abort_reason = reason
        self._aborted.set()
        # Wake anything parked in checkpoint() so it can observe the abort
        self._running.set()
        logger.warning(f"Processing aborted: {reason}")
        self._notify("aborted")

    def mark_finished(self) -> None:
        """Called by the pipeline once the run reached a terminal state"""
        self._finished = True

    async def checkpoint(self) -> None:
        """
        Wait while paused.

        Raises:
            RunAbortedError: once the run has been aborted
        """
        if not self._running.is_set():
            await self._running.wait()
        if self._aborted.is_set():
            raise RunAbortedError(self.abort_reason or "Run aborted")

    async def sleep(self, delay: float) -> None:
        """Sleep that returns early with RunAbortedError when the run is aborted"""
        if delay <= 0:
            await self.checkpoint()
            return
        try:
            await asyncio.wait_for(self._aborted.wait(), timeout=delay)
        except TimeoutError:
            return
        raise RunAbortedError(self.abort_reason or "Run aborted")

    async def wait_aborted(self) -> None:
        await self._aborted.wait()

    def _notify(self, change: str) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(change)
        except Exception as e:
            logger.error(f"Error in cancellation change callback: {e}", exc_info=True)

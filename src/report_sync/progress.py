"""
Progress aggregation for pipeline runs.

Dispatcher, poller and controller report what happened as events; the
ProgressAggregator is the only place those events turn into numbers. It
maps every chunk onto its own slice of the percentage scale and publishes
snapshots through a ProgressChannel, which never lets the reported
percentage go down.

Scale:
    0 - 5     start-up
    5 - 80    dispatch and remote reconciliation, split across chunks by
              record count (dispatch acknowledgement is worth 20% of a
              chunk's slice, remote task progress the remaining 80%)
    80 - 100  fetch of authoritative records and report merge
"""

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import AsyncIterator, Callable, Optional, Sequence

from .metrics import SYNC_RUN_PROGRESS
from .models import Chunk, ProcessingProgress, ProgressStatus

logger = logging.getLogger(__name__)

SYNC_START = 5.0
SYNC_END = 80.0
FETCH_STARTED = 80.0
FETCH_DONE = 90.0
MERGE_DONE = 95.0
COMPLETE = 100.0
DISPATCH_SHARE = 0.2

ProgressCallback = Callable[[ProcessingProgress], None]


@dataclass(frozen=True)
class RunStarted:
    pass


@dataclass(frozen=True)
class ChunkDispatched:
    chunk_index: int
    task_id: str


@dataclass(frozen=True)
class TaskProgressed:
    chunk_index: int
    progress: float


@dataclass(frozen=True)
class ChunkFinished:
    chunk_index: int


@dataclass(frozen=True)
class ChunkFailed:
    chunk_index: int
    message: str


@dataclass(frozen=True)
class PhaseChanged:
    phase: str


@dataclass(frozen=True)
class StatusChanged:
    status: ProgressStatus
    message: Optional[str] = None


class ProgressChannel:
    """
    Observer channel for progress snapshots.

    Subscribers are called synchronously on every accepted snapshot.
    ``updates()`` offers the same stream as an async iterator that only
    keeps the newest undelivered snapshot, so a slow consumer sees the
    latest state rather than a backlog.
    """

    def __init__(self):
        self._subscribers: list[ProgressCallback] = []
        self._latest: Optional[ProcessingProgress] = None
        self._version = 0
        self._changed = asyncio.Event()
        self._closed = False

    @property
    def latest(self) -> Optional[ProcessingProgress]:
        return self._latest

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, callback: ProgressCallback) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: ProgressCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def publish(self, snapshot: ProcessingProgress) -> bool:
        """
        Deliver a snapshot to subscribers.

        Returns:
            False if the snapshot was dropped (channel closed, or its
            percentage is below the last published one)
        """
        if self._closed:
            return False
        if self._latest is not None and snapshot.percentage < self._latest.percentage:
            logger.debug(
                f"Dropping out-of-order progress {snapshot.percentage} "
                f"(last {self._latest.percentage})"
            )
            return False

        self._latest = snapshot
        self._version += 1
        SYNC_RUN_PROGRESS.set(snapshot.percentage)

        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Error in progress callback: {e}", exc_info=True)

        self._wake()
        return True

    def close(self) -> None:
        self._closed = True
        self._wake()

    def _wake(self) -> None:
        # Swap in a fresh event so waiters on the old one all wake exactly once
        event, self._changed = self._changed, asyncio.Event()
        event.set()

    async def updates(self) -> AsyncIterator[ProcessingProgress]:
        """Yield the newest snapshot each time one is published, until closed"""
        seen = 0
        while True:
            if self._version != seen:
                seen = self._version
                yield self._latest
                continue
            if self._closed:
                return
            await self._changed.wait()


class ProgressAggregator:
    """
    Turns pipeline events into monotonic ProcessingProgress snapshots.

    Args:
        chunks: The run's chunks (their sizes define each chunk's weight)
        channel: Where snapshots are published
        clock: Monotonic clock in seconds (injectable for tests)
    """

    def __init__(
        self,
        chunks: Sequence[Chunk],
        channel: ProgressChannel,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.channel = channel
        self._clock = clock
        self._total_records = sum(len(chunk) for chunk in chunks)
        self._chunk_sizes = {chunk.index: len(chunk) for chunk in chunks}
        self._dispatched: set[int] = set()
        self._task_progress: dict[int, float] = {}
        self._finished: set[int] = set()
        self._failed: set[int] = set()
        self._errors: list[str] = []
        self._phase_floor = 0.0
        self._started_at: Optional[float] = None
        self._snapshot = ProcessingProgress(
            total_chunks=len(chunks),
            total_records=self._total_records,
        )

    @property
    def snapshot(self) -> ProcessingProgress:
        return self._snapshot

    @property
    def percentage(self) -> float:
        return self._snapshot.percentage

    def handle(self, event) -> None:
        """Apply one event and publish if anything visible changed"""
        if isinstance(event, RunStarted):
            self._started_at = self._clock()
            self._phase_floor = SYNC_START
            paused = self._snapshot.status == ProgressStatus.PAUSED
            self._publish(
                status=ProgressStatus.PAUSED if paused else ProgressStatus.PROCESSING,
                phase="dispatching",
            )
        elif isinstance(event, ChunkDispatched):
            self._dispatched.add(event.chunk_index)
            self._publish()
        elif isinstance(event, TaskProgressed):
            self._dispatched.add(event.chunk_index)
            self._task_progress[event.chunk_index] = min(100.0, max(0.0, event.progress))
            self._publish()
        elif isinstance(event, ChunkFinished):
            self._finished.add(event.chunk_index)
            self._publish()
        elif isinstance(event, ChunkFailed):
            self._failed.add(event.chunk_index)
            self._errors.append(f"Chunk {event.chunk_index + 1}: {event.message}")
            self._publish()
        elif isinstance(event, PhaseChanged):
            self._phase_floor = max(self._phase_floor, _PHASE_FLOORS.get(event.phase, 0.0))
            self._publish(phase=event.phase)
        elif isinstance(event, StatusChanged):
            if event.message:
                self._errors.append(event.message)
            self._publish(status=event.status)
        else:
            raise TypeError(f"Unknown progress event {event!r}")

    def complete(self) -> None:
        """Final 100% snapshot of a successful run"""
        self._phase_floor = COMPLETE
        self._publish(status=ProgressStatus.COMPLETED, phase="completed", force=True)

    def _chunk_fraction(self, index: int) -> float:
        if index in self._finished or index in self._failed:
            return 1.0
        fraction = DISPATCH_SHARE if index in self._dispatched else 0.0
        return fraction + (1.0 - DISPATCH_SHARE) * self._task_progress.get(index, 0.0) / 100.0

    def _computed_percentage(self) -> float:
        if not self._total_records:
            return self._phase_floor
        done = sum(
            size * self._chunk_fraction(index) for index, size in self._chunk_sizes.items()
        )
        sync_pct = SYNC_START + (SYNC_END - SYNC_START) * done / self._total_records
        if self._started_at is None:
            sync_pct = 0.0
        return max(self._phase_floor, sync_pct)

    def _estimate_remaining(self, percentage: float, status: ProgressStatus) -> Optional[float]:
        if status == ProgressStatus.COMPLETED:
            return 0.0
        if self._started_at is None:
            return None
        work_done = (percentage - SYNC_START) / (COMPLETE - SYNC_START)
        if work_done <= 0:
            return None
        elapsed = self._clock() - self._started_at
        if elapsed <= 0:
            return None
        return round(elapsed * (1 - work_done) / work_done, 1)

    def _publish(
        self,
        status: Optional[ProgressStatus] = None,
        phase: Optional[str] = None,
        force: bool = False,
    ) -> None:
        previous = self._snapshot
        if previous.status.is_terminal:
            return

        status = status or previous.status
        percentage = round(max(previous.percentage, self._computed_percentage()), 2)

        processed = sum(
            self._chunk_sizes[index] for index in self._finished if index not in self._failed
        )
        snapshot = replace(
            previous,
            percentage=percentage,
            current_chunk=len(self._finished | self._failed),
            processed_records=processed,
            status=status,
            phase=phase or previous.phase,
            estimated_time_remaining=self._estimate_remaining(percentage, status),
            errors=tuple(self._errors),
        )
        self._snapshot = snapshot

        visible_change = (
            force
            or int(percentage) > int(previous.percentage)
            or status != previous.status
            or snapshot.phase != previous.phase
        )
        if visible_change:
            self.channel.publish(snapshot)


_PHASE_FLOORS = {
    "dispatching": SYNC_START,
    "polling": SYNC_START,
    "fetching": FETCH_STARTED,
    "fetched": FETCH_DONE,
    "merging": FETCH_DONE,
    "merged": MERGE_DONE,
    "completed": COMPLETE,
}

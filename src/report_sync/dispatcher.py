"""
Chunk dispatch to the remote reconciliation service.

A dispatch holds one concurrency permit for its whole retry loop and for
the pacing pause that follows it, so at most ``concurrency`` chunks are
being pushed at the remote side at any moment.
"""

import logging
from typing import Callable, Optional

from opentelemetry import trace

from utils.retry import is_retryable_exception, retry_async
from utils.tracing import add_span_attributes, trace_operation

from .concurrency import Semaphore
from .config import ProcessingConfig
from .control import CancellationHandle
from .errors import PayloadError, ProtocolError, RunAbortedError, SyncError
from .metrics import SYNC_CHUNKS_DISPATCHED, SYNC_DISPATCH_RETRIES, SYNC_INFLIGHT_DISPATCHES
from .models import Chunk, Task
from .progress import ChunkDispatched
from .remote import RemoteSyncService

logger = logging.getLogger(__name__)


class SyncDispatcher:
    """
    Submits chunks and returns the Task handle the remote side assigns.

    Args:
        service: Remote reconciliation service
        limiter: Concurrency limiter owned by the current run
        config: Processing configuration
        handle: Cancellation handle of the current run
        on_event: Receives ChunkDispatched events
    """

    def __init__(
        self,
        service: RemoteSyncService,
        limiter: Semaphore,
        config: ProcessingConfig,
        handle: CancellationHandle,
        on_event: Optional[Callable[[object], None]] = None,
    ):
        self.service = service
        self.limiter = limiter
        self.config = config
        self.handle = handle
        self.on_event = on_event or (lambda event: None)

    def validate(self, chunk: Chunk) -> None:
        """
        Reject payloads the remote side would refuse anyway.

        Raises:
            PayloadError: for empty or oversized chunks
        """
        if not chunk.records:
            raise PayloadError(f"Chunk {chunk.label} has no records", chunk_index=chunk.index)
        if len(chunk) > self.config.max_chunk_records:
            raise PayloadError(
                f"Chunk {chunk.label} has {len(chunk)} records, "
                f"limit is {self.config.max_chunk_records}",
                chunk_index=chunk.index,
            )

    async def dispatch(self, chunk: Chunk) -> Task:
        """
        Submit one chunk, retrying transport failures.

        Returns:
            Pending Task for the chunk

        Raises:
            SyncError: terminal dispatch failure for this chunk
            RunAbortedError: if the run was aborted
        """
        with trace_operation(
            "report_sync.dispatch_chunk",
            kind=trace.SpanKind.CLIENT,
            chunk_index=chunk.index,
            record_count=len(chunk),
        ):
            try:
                self.validate(chunk)
                task = await self.limiter.execute(lambda: self._dispatch_with_permit(chunk))
            except RunAbortedError:
                raise
            except SyncError as e:
                if e.chunk_index is None:
                    e.chunk_index = chunk.index
                SYNC_CHUNKS_DISPATCHED.labels(status="failed").inc()
                logger.error(f"Dispatch of chunk {chunk.label} failed: {type(e).__name__}: {e}")
                raise

            add_span_attributes(task_id=task.task_id)
            return task

    async def _dispatch_with_permit(self, chunk: Chunk) -> Task:
        SYNC_INFLIGHT_DISPATCHES.inc()
        try:
            task_id = await retry_async(
                lambda: self._submit_once(chunk),
                max_attempts=self.config.retry_attempts,
                base_delay=self.config.retry_delay,
                backoff=self.config.retry_backoff,
                retry_if=is_retryable_exception,
                on_retry=lambda attempt, exc, delay: SYNC_DISPATCH_RETRIES.inc(),
                sleep=self.handle.sleep,
                operation_name=f"dispatch chunk {chunk.label}",
            )
        finally:
            SYNC_INFLIGHT_DISPATCHES.dec()

        task = Task(task_id=task_id, chunk_index=chunk.index, record_count=len(chunk))
        SYNC_CHUNKS_DISPATCHED.labels(status="accepted").inc()
        logger.info(f"Chunk {chunk.label} accepted as task {task_id} ({len(chunk)} records)")
        self.on_event(ChunkDispatched(chunk_index=chunk.index, task_id=task_id))

        # Pace the next dispatch while still holding the permit
        if chunk.index < chunk.total - 1 and self.config.pause_between_chunks > 0:
            await self.handle.sleep(self.config.pause_between_chunks)

        return task

    async def _submit_once(self, chunk: Chunk) -> str:
        await self.handle.checkpoint()
        logger.debug(f"Submitting chunk {chunk.label}")
        task_id = await self.service.submit(chunk.records)
        if not isinstance(task_id, str) or not task_id.strip():
            raise ProtocolError(
                f"Remote service returned invalid task id {task_id!r}", chunk_index=chunk.index
            )
        return task_id

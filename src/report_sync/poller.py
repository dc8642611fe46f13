"""
Task status polling.

Polls one remote task until it completes or fails. Polls are paced by
``poll_interval`` because aggressive polling would itself load the remote
service. Polling is not throttled by the dispatch limiter.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from opentelemetry import trace

from utils.retry import is_retryable_exception, retry_async
from utils.tracing import add_span_attributes, trace_operation

from .config import ProcessingConfig
from .control import CancellationHandle
from .errors import ProtocolError, TaskFailedError, TaskTimeoutError
from .metrics import SYNC_POLL_REQUESTS, SYNC_TASK_DURATION, SYNC_TASKS_FINISHED
from .models import Task, TaskStatus, TaskStatusReport
from .progress import TaskProgressed
from .remote import RemoteSyncService

logger = logging.getLogger(__name__)


class TaskPoller:
    """
    Drives a Task to a terminal state.

    Args:
        service: Remote reconciliation service
        config: Processing configuration (poll_interval, task_timeout, retries)
        handle: Cancellation handle of the current run
        on_event: Receives TaskProgressed events
        sleep: Pacing sleep; defaults to the handle's abort-aware sleep
    """

    def __init__(
        self,
        service: RemoteSyncService,
        config: ProcessingConfig,
        handle: CancellationHandle,
        on_event: Optional[Callable[[object], None]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.service = service
        self.config = config
        self.handle = handle
        self.on_event = on_event or (lambda event: None)
        self._sleep = sleep or handle.sleep

    async def poll(self, task: Task) -> Task:
        """
        Poll until the task completes.

        Returns:
            The task, now completed

        Raises:
            TaskFailedError: the remote side reported failure
            TaskTimeoutError: task_timeout elapsed first
            ProtocolError: unrecognized status or malformed answer
            TransportError: polling kept failing after all retry attempts
            RunAbortedError: the run was aborted
        """
        started = time.monotonic()

        with trace_operation(
            "report_sync.poll_task",
            kind=trace.SpanKind.CLIENT,
            task_id=task.task_id,
            chunk_index=task.chunk_index,
        ):
            try:
                if self.config.task_timeout is None:
                    await self._poll_until_terminal(task)
                else:
                    async with asyncio.timeout(self.config.task_timeout):
                        await self._poll_until_terminal(task)
            except TimeoutError:
                SYNC_TASKS_FINISHED.labels(status="timeout").inc()
                message = f"Task {task.task_id} did not finish within {self.config.task_timeout}s"
                logger.error(message)
                raise TaskTimeoutError(
                    message, chunk_index=task.chunk_index, task_id=task.task_id
                ) from None
            except ProtocolError as e:
                SYNC_TASKS_FINISHED.labels(status="protocol_error").inc()
                e.chunk_index, e.task_id = task.chunk_index, task.task_id
                logger.error(f"Protocol error while polling task {task.task_id}: {e}")
                raise

            SYNC_TASK_DURATION.observe(time.monotonic() - started)
            add_span_attributes(status=task.status.value)

            if task.status == TaskStatus.FAILED:
                SYNC_TASKS_FINISHED.labels(status="failed").inc()
                logger.error(f"Task {task.task_id} (chunk {task.chunk_index + 1}) failed: {task.error}")
                raise TaskFailedError(task.error, chunk_index=task.chunk_index, task_id=task.task_id)

            SYNC_TASKS_FINISHED.labels(status="completed").inc()
            logger.info(f"Task {task.task_id} (chunk {task.chunk_index + 1}) completed")
            return task

    async def _poll_until_terminal(self, task: Task) -> None:
        while True:
            report = await retry_async(
                lambda: self._poll_once(task),
                max_attempts=self.config.retry_attempts,
                base_delay=self.config.retry_delay,
                backoff=self.config.retry_backoff,
                retry_if=is_retryable_exception,
                sleep=self._retry_sleep,
                operation_name=f"poll task {task.task_id}",
            )

            if task.advance(report.status, report.progress, report.error):
                self.on_event(TaskProgressed(chunk_index=task.chunk_index, progress=task.progress))

            if task.is_terminal:
                return

            await self._sleep(self.config.poll_interval)

    async def _retry_sleep(self, delay: float) -> None:
        # A failed poll may still have reached the service
        await self._sleep(max(delay, self.config.poll_interval))

    async def _poll_once(self, task: Task) -> TaskStatusReport:
        await self.handle.checkpoint()
        SYNC_POLL_REQUESTS.inc()
        report = await self.service.poll_once(task.task_id)
        if not isinstance(report, TaskStatusReport):
            raise ProtocolError(f"Unexpected poll result {report!r}", task_id=task.task_id)
        logger.debug(
            f"Task {task.task_id}: status={report.status.value} progress={report.progress}"
        )
        return report


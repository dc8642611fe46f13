"""
Pipeline controller for bulk report synchronization.

This module provides ReportSyncPipeline, which drives one run through
partitioning, bounded-concurrency dispatch, polling, fetch of the
authoritative records and the final merge:

    idle -> partitioning -> dispatching -> polling -> fetching -> merging -> completed

with failed and aborted reachable from every non-terminal state. A chunk
or task failure does not stop its siblings; the run fails with
PartialRunError once every outstanding task has finished.
"""

import asyncio
import time
import uuid
from typing import Iterable, Optional, Sequence

from opentelemetry import trace

from utils.logging import ContextLogger
from utils.retry import is_retryable_exception, retry_async
from utils.tracing import add_span_attributes, add_span_event, trace_operation

from .concurrency import Semaphore
from .config import ProcessingConfig
from .control import CancellationHandle
from .dispatcher import SyncDispatcher
from .errors import (
    InvalidInputError,
    PartialRunError,
    RunAbortedError,
    RunAlreadyActiveError,
    SyncError,
)
from .metrics import SYNC_RECORDS, SYNC_RUN_DURATION, SYNC_RUNS
from .models import (
    Chunk,
    ChunkFailure,
    MergedReport,
    PipelineState,
    ProcessingProgress,
    ProgressStatus,
    Record,
    RunState,
    StoreRecord,
    Task,
    can_transition,
)
from .partition import choose_chunk_size, partition_records, verify_partition
from .poller import TaskPoller
from .progress import (
    ChunkFailed,
    ChunkFinished,
    PhaseChanged,
    ProgressAggregator,
    ProgressCallback,
    ProgressChannel,
    RunStarted,
    StatusChanged,
)
from .remote import RemoteSyncService
from .report import build_merged_report

_CONTROL_STATUS = {
    "paused": ProgressStatus.PAUSED,
    "resumed": ProgressStatus.PROCESSING,
    "aborted": ProgressStatus.ABORTED,
}


def validate_records(records: Sequence[Record]) -> None:
    """
    Reject record sets that cannot be keyed by serial number.

    Raises:
        InvalidInputError: on non-Record items, blank or duplicate serial numbers
    """
    seen: set[str] = set()
    duplicates: list[str] = []
    for position, record in enumerate(records):
        if not isinstance(record, Record):
            raise InvalidInputError(f"Item {position} is not a Record: {record!r}")
        if not record.serial_number.strip():
            raise InvalidInputError(f"Record {position} has a blank serial number")
        if record.serial_number in seen:
            duplicates.append(record.serial_number)
        seen.add(record.serial_number)

    if duplicates:
        raise InvalidInputError(
            f"{len(duplicates)} duplicate serial number(s), e.g. {duplicates[:5]}"
        )


def _leaf_errors(group: BaseExceptionGroup) -> list[BaseException]:
    leaves = []
    for error in group.exceptions:
        if isinstance(error, BaseExceptionGroup):
            leaves.extend(_leaf_errors(error))
        else:
            leaves.append(error)
    return leaves


def _unwrap_group(group: BaseExceptionGroup) -> BaseException:
    """First meaningful error of a task group; aborts win over everything else"""
    leaves = _leaf_errors(group)
    for error in leaves:
        if isinstance(error, RunAbortedError):
            return error
    return leaves[0]


class _RunContext:
    """Everything owned by one run"""

    def __init__(
        self,
        records: list[Record],
        config: ProcessingConfig,
        on_progress: Optional[ProgressCallback],
    ):
        self.records = records
        self.config = config
        self.state = RunState(run_id=uuid.uuid4().hex[:12])
        self.log = ContextLogger(__name__, run_id=self.state.run_id)
        self.channel = ProgressChannel()
        self.channel.subscribe(self._remember)
        if on_progress is not None:
            self.channel.subscribe(on_progress)
        self.limiter = Semaphore(config.concurrency)
        self.handle = CancellationHandle(on_change=self._on_control_change)
        self.aggregator = ProgressAggregator([], self.channel)

    @property
    def run_id(self) -> str:
        return self.state.run_id

    def _remember(self, snapshot: ProcessingProgress) -> None:
        self.state.progress = snapshot

    def _on_control_change(self, change: str) -> None:
        message = self.handle.abort_reason if change == "aborted" else None
        self.aggregator.handle(StatusChanged(_CONTROL_STATUS[change], message))

    def transition(self, target: PipelineState) -> None:
        previous = self.state.state
        self.state.transition(target)
        self.log.debug(f"Run {self.run_id}: {previous.value} -> {target.value}")


class SyncRun:
    """
    Caller-facing handle for a scheduled run.

    Awaiting the run (``await run`` or ``await run.result()``) returns the
    MergedReport or raises the run's terminal error.
    """

    def __init__(self, context: _RunContext, task: asyncio.Task):
        self._context = context
        self._task = task

    @property
    def run_id(self) -> str:
        return self._context.run_id

    @property
    def state(self) -> PipelineState:
        return self._context.state.state

    @property
    def progress(self) -> ProcessingProgress:
        return self._context.aggregator.snapshot

    @property
    def config(self) -> ProcessingConfig:
        return self._context.config

    @property
    def chunks(self) -> list[Chunk]:
        return list(self._context.state.chunks)

    @property
    def tasks(self) -> list[Task]:
        return list(self._context.state.tasks)

    @property
    def failures(self) -> list[ChunkFailure]:
        return list(self._context.state.failures)

    @property
    def is_paused(self) -> bool:
        return self._context.handle.is_paused

    @property
    def is_aborted(self) -> bool:
        return self._context.handle.is_aborted

    def pause(self) -> None:
        self._context.handle.pause()

    def resume(self) -> None:
        self._context.handle.resume()

    def abort(self, reason: str = "Operation aborted by user") -> None:
        self._context.handle.abort(reason)

    def done(self) -> bool:
        return self._task.done()

    def updates(self):
        """Async iterator over progress snapshots of this run"""
        return self._context.channel.updates()

    async def result(self) -> MergedReport:
        return await self._task

    def __await__(self):
        return self._task.__await__()

    def __repr__(self) -> str:
        return f"SyncRun(run_id={self.run_id!r}, state={self.state.value})"


class ReportSyncPipeline:
    """
    Orchestrates bulk synchronization runs against a remote service.

    Only one run may be active per pipeline instance. Every run builds its
    own limiter, dispatcher, poller and progress aggregator.

    Args:
        service: Remote reconciliation service
        config: Processing settings; None picks adaptive settings per run
            from the record volume
        on_progress: Called with every published ProcessingProgress snapshot

    Example:
        >>> pipeline = ReportSyncPipeline(HttpSyncService("https://sync.example.com/api"))
        >>> run = pipeline.start(records)
        >>> run.pause(); run.resume()
        >>> report = await run
    """

    def __init__(
        self,
        service: RemoteSyncService,
        config: Optional[ProcessingConfig] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.service = service
        self.config = config
        self.on_progress = on_progress
        self._active: Optional[_RunContext] = None

    @property
    def is_active(self) -> bool:
        return self._active is not None

    def resolve_config(self, record_count: int) -> ProcessingConfig:
        """Settings for a run of record_count records, with the chunk size filled in"""
        config = self.config or ProcessingConfig.for_volume(record_count)
        if config.chunk_size is None:
            chunk_size = min(choose_chunk_size(record_count), config.max_chunk_records)
            config = config.with_overrides(chunk_size=chunk_size)
        return config

    def start(self, records: Iterable[Record]) -> SyncRun:
        """
        Schedule a run on the running event loop and return its handle.

        Raises:
            RunAlreadyActiveError: if a run is already active
            InvalidInputError: on blank or duplicate serial numbers
        """
        if self._active is not None:
            raise RunAlreadyActiveError(
                f"Run {self._active.run_id} is still {self._active.state.state.value}"
            )

        records = list(records)
        validate_records(records)

        context = _RunContext(records, self.resolve_config(len(records)), self.on_progress)
        context.transition(PipelineState.PARTITIONING)

        chunks = partition_records(records, context.config.chunk_size)
        verify_partition(chunks, records)
        context.state.chunks = chunks
        context.aggregator = ProgressAggregator(chunks, context.channel)

        context.log.info(
            f"Starting sync run {context.run_id}: {len(records)} records in {len(chunks)} chunks "
            f"(chunk_size={context.config.chunk_size}, concurrency={context.config.concurrency})"
        )

        self._active = context
        task = asyncio.get_running_loop().create_task(
            self._execute(context), name=f"report-sync-{context.run_id}"
        )
        return SyncRun(context, task)

    async def run(self, records: Iterable[Record]) -> MergedReport:
        """Start a run and wait for its report"""
        return await self.start(records)

    async def _execute(self, context: _RunContext) -> MergedReport:
        started = time.monotonic()
        status = "failed"

        try:
            with trace_operation(
                "report_sync.run",
                kind=trace.SpanKind.INTERNAL,
                run_id=context.run_id,
                record_count=len(context.records),
                chunk_count=len(context.state.chunks),
            ):
                report = await self._run_until_aborted(context)
                add_span_attributes(
                    matched=report.matched_count, unmatched=report.unmatched_count
                )
            status = "completed"
            return report

        except RunAbortedError:
            status = "aborted"
            raise

        except BaseException as e:
            self._mark_failed(context, e)
            raise

        finally:
            duration = time.monotonic() - started
            context.handle.mark_finished()
            context.channel.close()
            if self._active is context:
                self._active = None
            SYNC_RUNS.labels(status=status).inc()
            SYNC_RUN_DURATION.labels(status=status).observe(duration)
            context.log.info(f"Sync run {context.run_id} {status} in {duration:.2f}s")

    async def _run_until_aborted(self, context: _RunContext) -> MergedReport:
        body = asyncio.create_task(self._run_body(context), name=f"report-sync-body-{context.run_id}")
        aborted = asyncio.create_task(context.handle.wait_aborted())
        try:
            await asyncio.wait({body, aborted}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            aborted.cancel()
            if not body.done() and not context.handle.is_aborted:
                body.cancel()

        if body.done() and not body.cancelled() and body.exception() is None:
            return body.result()

        if not context.handle.is_aborted:
            return body.result()

        # Stop the body; cancelled dispatches hand their permits back on the way out
        context.limiter.abort()
        body.cancel()
        outcomes = await asyncio.gather(body, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException) and not isinstance(
                outcome, (asyncio.CancelledError, RunAbortedError)
            ):
                context.log.debug(f"Ignoring error of aborted run: {outcome!r}")

        if can_transition(context.state.state, PipelineState.ABORTED):
            context.transition(PipelineState.ABORTED)
        reason = context.handle.abort_reason or "Run aborted"
        context.log.warning(f"Sync run {context.run_id} aborted in state {context.state.state.value}")
        raise RunAbortedError(reason)

    async def _run_body(self, context: _RunContext) -> MergedReport:
        chunks = context.state.chunks
        aggregator = context.aggregator

        if not chunks:
            context.transition(PipelineState.COMPLETED)
            aggregator.complete()
            context.log.info("No records to synchronize")
            return MergedReport.empty()

        context.transition(PipelineState.DISPATCHING)
        aggregator.handle(RunStarted())
        tasks = await self._dispatch_all(context)

        context.transition(PipelineState.POLLING)
        aggregator.handle(PhaseChanged("polling"))
        completed = await self._poll_all(context, tasks)

        if context.state.failures:
            raise self._partial_failure(context, completed)

        context.transition(PipelineState.FETCHING)
        aggregator.handle(PhaseChanged("fetching"))
        store_records = await self._fetch(context)
        aggregator.handle(PhaseChanged("fetched"))

        context.transition(PipelineState.MERGING)
        aggregator.handle(PhaseChanged("merging"))
        report = build_merged_report(context.records, store_records)
        aggregator.handle(PhaseChanged("merged"))

        context.transition(PipelineState.COMPLETED)
        aggregator.complete()

        SYNC_RECORDS.labels(result="matched").inc(report.matched_count)
        SYNC_RECORDS.labels(result="unmatched").inc(report.unmatched_count)
        return report

    async def _dispatch_all(self, context: _RunContext) -> list[Task]:
        dispatcher = SyncDispatcher(
            self.service,
            context.limiter,
            context.config,
            context.handle,
            on_event=context.aggregator.handle,
        )
        tasks: dict[int, Task] = {}

        async def dispatch_one(chunk: Chunk) -> None:
            try:
                tasks[chunk.index] = await dispatcher.dispatch(chunk)
            except RunAbortedError:
                raise
            except SyncError as e:
                self._record_failure(context, chunk, "dispatch", e)

        try:
            async with asyncio.TaskGroup() as group:
                for chunk in context.state.chunks:
                    group.create_task(dispatch_one(chunk), name=f"dispatch-{chunk.index}")
        except BaseExceptionGroup as eg:
            raise _unwrap_group(eg) from eg

        context.state.tasks = [tasks[index] for index in sorted(tasks)]
        context.log.info(
            f"Dispatched {len(tasks)}/{len(context.state.chunks)} chunks "
            f"(peak concurrency {context.limiter.peak_held})"
        )
        return context.state.tasks

    async def _poll_all(self, context: _RunContext, tasks: list[Task]) -> list[Task]:
        poller = TaskPoller(
            self.service,
            context.config,
            context.handle,
            on_event=context.aggregator.handle,
        )
        completed: list[Task] = []
        chunks = context.state.chunks

        async def poll_one(task: Task) -> None:
            try:
                await poller.poll(task)
            except RunAbortedError:
                raise
            except SyncError as e:
                self._record_failure(context, chunks[task.chunk_index], "poll", e)
                return
            completed.append(task)
            context.aggregator.handle(ChunkFinished(chunk_index=task.chunk_index))

        try:
            async with asyncio.TaskGroup() as group:
                for task in tasks:
                    group.create_task(poll_one(task), name=f"poll-{task.task_id}")
        except BaseExceptionGroup as eg:
            raise _unwrap_group(eg) from eg

        return sorted(completed, key=lambda t: t.chunk_index)

    async def _fetch(self, context: _RunContext) -> list[StoreRecord]:
        keys = [record.serial_number for record in context.records]
        config = context.config

        async def fetch_once() -> list[StoreRecord]:
            await context.handle.checkpoint()
            with trace_operation(
                "report_sync.fetch_records",
                kind=trace.SpanKind.CLIENT,
                key_count=len(keys),
            ):
                return await self.service.fetch_by_keys(keys)

        store_records = await retry_async(
            fetch_once,
            max_attempts=config.retry_attempts,
            base_delay=config.retry_delay,
            backoff=config.retry_backoff,
            retry_if=is_retryable_exception,
            sleep=context.handle.sleep,
            operation_name="fetch store records",
        )
        context.log.info(f"Fetched {len(store_records)} store records for {len(keys)} keys")
        return store_records

    def _record_failure(
        self, context: _RunContext, chunk: Chunk, stage: str, error: SyncError
    ) -> None:
        failure = ChunkFailure(
            chunk_index=chunk.index,
            serial_numbers=tuple(chunk.serial_numbers),
            stage=stage,
            error_type=type(error).__name__,
            message=error.message,
            task_id=error.task_id,
            retryable=error.retryable,
        )
        context.state.failures.append(failure)
        context.aggregator.handle(ChunkFailed(chunk_index=chunk.index, message=error.message))
        add_span_event("chunk_failed", chunk_index=chunk.index, stage=stage, error=failure.error_type)
        context.log.error(
            f"Chunk {chunk.label} failed during {stage}: {failure.error_type}: {failure.message}",
            chunk_index=chunk.index,
        )

    def _partial_failure(self, context: _RunContext, completed: list[Task]) -> PartialRunError:
        failures = sorted(context.state.failures, key=lambda f: f.chunk_index)
        failed_records = sum(len(f.serial_numbers) for f in failures)
        return PartialRunError(
            f"{len(failures)} of {len(context.state.chunks)} chunks failed "
            f"({failed_records} records); first error: {failures[0].message}",
            failures=failures,
            succeeded_chunks=[task.chunk_index for task in completed],
        )

    def _mark_failed(self, context: _RunContext, error: BaseException) -> None:
        if can_transition(context.state.state, PipelineState.FAILED):
            context.transition(PipelineState.FAILED)
        message = error.message if isinstance(error, SyncError) else f"{type(error).__name__}: {error}"
        context.aggregator.handle(StatusChanged(ProgressStatus.FAILED, message))
        if isinstance(error, SyncError):
            context.log.error(f"Sync run {context.run_id} failed: {message}")
        else:
            context.log.critical(f"Sync run {context.run_id} failed with a defect: {message}", exc_info=error)

"""
Bulk report synchronization.

Reconciles uploaded SIM sales records against a remote authoritative store
through an asynchronous task API and merges the result into a report
grouped by owning team.

Usage:
    from report_sync import HttpSyncService, ReportSyncPipeline, Record

    pipeline = ReportSyncPipeline(HttpSyncService("https://sync.example.com/api/actions"))
    run = pipeline.start(records)
    report = await run
"""

from .concurrency import Semaphore
from .config import STRATEGIES, ProcessingConfig
from .control import CancellationHandle
from .dispatcher import SyncDispatcher
from .errors import (
    InvalidInputError,
    InvariantViolation,
    PartialRunError,
    PayloadError,
    ProtocolError,
    RejectionError,
    RunAbortedError,
    RunAlreadyActiveError,
    SyncError,
    TaskFailedError,
    TaskTimeoutError,
    TransportError,
)
from .models import (
    Chunk,
    ChunkFailure,
    GroupReport,
    MergedReport,
    PipelineState,
    ProcessingProgress,
    ProgressStatus,
    ReconciledRecord,
    Record,
    StoreRecord,
    Task,
    TaskStatus,
    TaskStatusReport,
)
from .partition import choose_chunk_size, partition_records, verify_partition
from .pipeline import ReportSyncPipeline, SyncRun
from .poller import TaskPoller
from .progress import ProgressAggregator, ProgressChannel
from .remote import HttpSyncService, RemoteSyncService
from .report import build_merged_report

__version__ = "1.0.0"

__all__ = [
    "ReportSyncPipeline",
    "SyncRun",
    "ProcessingConfig",
    "STRATEGIES",
    "Semaphore",
    "CancellationHandle",
    "SyncDispatcher",
    "TaskPoller",
    "ProgressAggregator",
    "ProgressChannel",
    "RemoteSyncService",
    "HttpSyncService",
    "choose_chunk_size",
    "partition_records",
    "verify_partition",
    "build_merged_report",
    "Record",
    "Chunk",
    "Task",
    "TaskStatus",
    "TaskStatusReport",
    "ProcessingProgress",
    "ProgressStatus",
    "PipelineState",
    "ChunkFailure",
    "StoreRecord",
    "ReconciledRecord",
    "GroupReport",
    "MergedReport",
    "SyncError",
    "TransportError",
    "PayloadError",
    "RejectionError",
    "ProtocolError",
    "TaskFailedError",
    "TaskTimeoutError",
    "PartialRunError",
    "RunAbortedError",
    "RunAlreadyActiveError",
    "InvalidInputError",
    "InvariantViolation",
]

"""
Data model for the report sync pipeline.

Records and chunks are immutable once built. Tasks are the only mutable
entities and only ever move forward through their lifecycle.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from .errors import InvalidInputError, InvariantViolation, ProtocolError

DEFAULT_KEY_FIELD = "simSerialNumber"
UNKNOWN_TEAM = "Unknown"


def _frozen_mapping(values: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(values or {}))


@dataclass(frozen=True)
class Record:
    """One uploaded SIM sale, keyed by its serial number."""

    serial_number: str
    quality: str = ""
    fields: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "fields", _frozen_mapping(self.fields))

    @property
    def is_quality(self) -> bool:
        return self.quality.strip().upper() == "Y"

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any], key_field: str = DEFAULT_KEY_FIELD) -> "Record":
        """
        Build a Record from a parsed spreadsheet/CSV/JSON row.

        Raises:
            InvalidInputError: if the key field is missing or blank
        """
        raw_key = row.get(key_field)
        serial = str(raw_key).strip() if raw_key is not None else ""
        if not serial:
            raise InvalidInputError(f"Row is missing key field {key_field!r}: {dict(row)!r}")

        quality = row.get("quality")
        extra = {k: v for k, v in row.items() if k not in (key_field, "quality")}
        return cls(
            serial_number=serial,
            quality="" if quality is None else str(quality),
            fields=extra,
        )

    def to_payload(self) -> dict[str, Any]:
        return {**self.fields, DEFAULT_KEY_FIELD: self.serial_number, "quality": self.quality}


@dataclass(frozen=True)
class Chunk:
    """Ordered, contiguous slice of a run's records."""

    index: int
    total: int
    records: tuple[Record, ...]

    def __len__(self) -> int:
        return len(self.records)

    @property
    def serial_numbers(self) -> list[str]:
        return [record.serial_number for record in self.records]

    @property
    def label(self) -> str:
        return f"{self.index + 1}/{self.total}"


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @classmethod
    def parse(cls, raw: Any, task_id: Optional[str] = None) -> "TaskStatus":
        """
        Parse a status string reported by the remote service.

        Raises:
            ProtocolError: for anything that is not a known status
        """
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise ProtocolError(f"Unrecognized task status {raw!r}", task_id=task_id) from None


_STATUS_RANK = {
    TaskStatus.PENDING: 0,
    TaskStatus.RUNNING: 1,
    TaskStatus.COMPLETED: 2,
    TaskStatus.FAILED: 2,
}


@dataclass
class Task:
    """Handle for the remote reconciliation of one chunk."""

    task_id: str
    chunk_index: int
    record_count: int
    status: TaskStatus = TaskStatus.PENDING
    progress: float = 0.0
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def advance(self, status: TaskStatus, progress: float, error: Optional[str] = None) -> bool:
        """
        Apply a polled status report.

        Status reports that would move the task backwards (a late "pending"
        after "running") are ignored. Progress is clamped to 0-100.

        Returns:
            True if the task state changed

        Raises:
            InvariantViolation: if the task is already terminal and the
                report names a different terminal state
        """
        if self.is_terminal:
            if status != self.status and status.is_terminal:
                raise InvariantViolation(
                    f"Task {self.task_id} is already {self.status.value}, "
                    f"cannot become {status.value}"
                )
            return False

        if status.rank < self.status.rank:
            return False

        progress = min(100.0, max(0.0, float(progress)))
        if status == TaskStatus.COMPLETED:
            progress = 100.0

        changed = (status, progress, error) != (self.status, self.progress, self.error)
        self.status = status
        self.progress = progress
        if status == TaskStatus.FAILED:
            self.error = error or "Remote task failed without an error message"
        return changed


@dataclass(frozen=True)
class TaskStatusReport:
    """One answer from the remote status endpoint."""

    status: TaskStatus
    progress: float = 0.0
    error: Optional[str] = None


class ProgressStatus(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (ProgressStatus.COMPLETED, ProgressStatus.FAILED, ProgressStatus.ABORTED)


@dataclass(frozen=True)
class ProcessingProgress:
    """Point-in-time view of a run, for caller feedback only."""

    percentage: float = 0.0
    current_chunk: int = 0
    total_chunks: int = 0
    processed_records: int = 0
    total_records: int = 0
    status: ProgressStatus = ProgressStatus.IDLE
    phase: str = "idle"
    estimated_time_remaining: Optional[float] = None
    errors: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "percentage": self.percentage,
            "current_chunk": self.current_chunk,
            "total_chunks": self.total_chunks,
            "processed_records": self.processed_records,
            "total_records": self.total_records,
            "status": self.status.value,
            "phase": self.phase,
            "estimated_time_remaining": self.estimated_time_remaining,
            "errors": list(self.errors),
        }


class PipelineState(str, Enum):
    IDLE = "idle"
    PARTITIONING = "partitioning"
    DISPATCHING = "dispatching"
    POLLING = "polling"
    FETCHING = "fetching"
    MERGING = "merging"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineState.COMPLETED, PipelineState.FAILED, PipelineState.ABORTED)


_FORWARD_TRANSITIONS = {
    PipelineState.IDLE: {PipelineState.PARTITIONING},
    PipelineState.PARTITIONING: {PipelineState.DISPATCHING, PipelineState.COMPLETED},
    PipelineState.DISPATCHING: {PipelineState.POLLING},
    PipelineState.POLLING: {PipelineState.FETCHING},
    PipelineState.FETCHING: {PipelineState.MERGING},
    PipelineState.MERGING: {PipelineState.COMPLETED},
}


def can_transition(current: PipelineState, target: PipelineState) -> bool:
    """Whether the pipeline state machine allows current -> target"""
    if current.is_terminal:
        return False
    if target in (PipelineState.FAILED, PipelineState.ABORTED):
        return True
    return target in _FORWARD_TRANSITIONS.get(current, set())


@dataclass(frozen=True)
class ChunkFailure:
    """A chunk that could not be reconciled, with what is needed to resubmit it."""

    chunk_index: int
    serial_numbers: tuple[str, ...]
    stage: str
    error_type: str
    message: str
    task_id: Optional[str] = None
    retryable: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunk_index": self.chunk_index,
            "record_count": len(self.serial_numbers),
            "stage": self.stage,
            "error_type": self.error_type,
            "message": self.message,
            "task_id": self.task_id,
            "retryable": self.retryable,
        }


@dataclass
class RunState:
    """Mutable state owned by a single pipeline run."""

    run_id: str
    state: PipelineState = PipelineState.IDLE
    chunks: list[Chunk] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    failures: list[ChunkFailure] = field(default_factory=list)
    progress: ProcessingProgress = field(default_factory=ProcessingProgress)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def transition(self, target: PipelineState) -> None:
        if not can_transition(self.state, target):
            raise InvariantViolation(
                f"Illegal pipeline transition {self.state.value} -> {target.value}"
            )
        self.state = target


@dataclass(frozen=True)
class StoreRecord:
    """Authoritative SIM record held by the remote store."""

    serial_number: str
    team: str = UNKNOWN_TEAM
    uploaded_by: str = UNKNOWN_TEAM
    attributes: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "attributes", _frozen_mapping(self.attributes))

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "StoreRecord":
        """
        Raises:
            ProtocolError: if the payload has no serial number
        """
        serial = payload.get(DEFAULT_KEY_FIELD) or payload.get("serialNumber")
        if not serial:
            raise ProtocolError(f"Store record without serial number: {dict(payload)!r}")
        known = (DEFAULT_KEY_FIELD, "serialNumber", "team", "uploadedBy")
        return cls(
            serial_number=str(serial),
            team=payload.get("team") or UNKNOWN_TEAM,
            uploaded_by=payload.get("uploadedBy") or UNKNOWN_TEAM,
            attributes={k: v for k, v in payload.items() if k not in known},
        )


@dataclass(frozen=True)
class ReconciledRecord:
    record: Record
    matched: bool
    quality: bool
    team: str
    uploaded_by: str

    @property
    def serial_number(self) -> str:
        return self.record.serial_number

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.record.to_payload(),
            "matched": self.matched,
            "qualitySim": self.quality,
            "team": self.team,
            "uploadedBy": self.uploaded_by,
        }


@dataclass(frozen=True)
class GroupReport:
    team: str
    records: tuple[ReconciledRecord, ...]
    matched_count: int
    quality_count: int

    @property
    def unmatched_count(self) -> int:
        return len(self.records) - self.matched_count

    def to_dict(self, include_records: bool = True) -> dict[str, Any]:
        data = {
            "team": self.team,
            "total": len(self.records),
            "matched": self.matched_count,
            "quality": self.quality_count,
            "unmatched": self.unmatched_count,
        }
        if include_records:
            data["records"] = [record.to_dict() for record in self.records]
        return data


@dataclass(frozen=True)
class MergedReport:
    """Grouped, reconciled output of a completed run."""

    records: tuple[ReconciledRecord, ...]
    groups: tuple[GroupReport, ...]
    matched_count: int
    quality_count: int
    unmatched_count: int
    total_count: int
    generated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def empty(cls) -> "MergedReport":
        return cls(
            records=(),
            groups=(),
            matched_count=0,
            quality_count=0,
            unmatched_count=0,
            total_count=0,
        )

    def group(self, team: str) -> Optional[GroupReport]:
        for group in self.groups:
            if group.team == team:
                return group
        return None

    def to_dict(self, include_records: bool = True) -> dict[str, Any]:
        return {
            "generated_at": self.generated_at.isoformat(),
            "total": self.total_count,
            "matched": self.matched_count,
            "quality": self.quality_count,
            "unmatched": self.unmatched_count,
            "groups": [group.to_dict(include_records) for group in self.groups],
        }

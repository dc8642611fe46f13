"""
Interface to the remote reconciliation service.

The pipeline only ever talks to the remote side through these three calls,
so runs can be exercised end to end against an in-memory implementation.
"""

from abc import ABC, abstractmethod
from typing import Sequence

from ..models import Record, StoreRecord, TaskStatusReport


class RemoteSyncService(ABC):
    """
    Remote reconciliation service.

    Implementations raise report_sync.errors types: TransportError for
    retryable transport failures, PayloadError / RejectionError when the
    request itself is refused, ProtocolError for malformed answers.
    """

    @abstractmethod
    async def submit(self, records: Sequence[Record]) -> str:
        """Hand one chunk to the remote side; returns the task id once accepted"""

    @abstractmethod
    async def poll_once(self, task_id: str) -> TaskStatusReport:
        """Current status and progress (0-100) of a task"""

    @abstractmethod
    async def fetch_by_keys(self, keys: Sequence[str]) -> list[StoreRecord]:
        """Authoritative records for the given serial numbers (unknown keys are omitted)"""

    async def close(self) -> None:
        """Release transport resources"""

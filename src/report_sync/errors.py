"""
Error taxonomy for the report sync pipeline.

Every error the pipeline surfaces to a caller derives from SyncError and
carries enough detail (chunk index, task id, underlying message) to decide
what to resubmit. Local defects raise InvariantViolation instead, which the
per-chunk handlers never catch.
"""

from typing import Any, Optional, Sequence


class SyncError(Exception):
    """Base class for pipeline errors."""

    retryable = False

    def __init__(
        self,
        message: str,
        chunk_index: Optional[int] = None,
        task_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.chunk_index = chunk_index
        self.task_id = task_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": type(self).__name__,
            "message": self.message,
            "chunk_index": self.chunk_index,
            "task_id": self.task_id,
            "retryable": self.retryable,
        }


class TransportError(SyncError):
    """Network or transport failure talking to the remote service."""

    retryable = True


class PayloadError(SyncError):
    """Malformed or oversized payload; resending it will not help."""


class RejectionError(SyncError):
    """The remote service refused the request."""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code


class ProtocolError(SyncError):
    """The remote service answered with something outside the protocol."""


class TaskFailedError(SyncError):
    """A remote task reached the failed state."""


class TaskTimeoutError(SyncError):
    """A remote task did not finish within the configured wall-clock limit."""


class InvalidInputError(SyncError):
    """The input record set cannot be synchronized (missing or duplicate keys)."""


class RunAlreadyActiveError(SyncError):
    """A pipeline run is already in progress on this pipeline instance."""


class RunAbortedError(SyncError):
    """The run was aborted through its cancellation handle."""


class PartialRunError(SyncError):
    """
    One or more chunks failed while others succeeded.

    Attributes:
        failures: ChunkFailure entries, one per failed chunk
        succeeded_chunks: indices of chunks whose task completed
    """

    def __init__(self, message: str, failures: Sequence[Any], succeeded_chunks: Sequence[int]):
        super().__init__(message)
        self.failures = list(failures)
        self.succeeded_chunks = list(succeeded_chunks)

    def failed_serial_numbers(self) -> list[str]:
        """Serial numbers belonging to failed chunks, in chunk order"""
        serials: list[str] = []
        for failure in sorted(self.failures, key=lambda f: f.chunk_index):
            serials.extend(failure.serial_numbers)
        return serials

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["failures"] = [failure.to_dict() for failure in self.failures]
        data["succeeded_chunks"] = self.succeeded_chunks
        return data


class InvariantViolation(RuntimeError):
    """A local invariant was broken; this is a defect, never retried."""

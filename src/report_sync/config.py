"""
Processing configuration for report sync runs.

All durations are in seconds. Values can come from defaults, a named
strategy, adaptive sizing by record volume, environment variables
(REPORT_SYNC_*) or CLI flags, in increasing order of precedence.
"""

import logging
import os
from dataclasses import asdict, dataclass, replace
from typing import Any, Optional

from utils.retry import BACKOFF_STRATEGIES

logger = logging.getLogger(__name__)

ENV_PREFIX = "REPORT_SYNC_"

# Above this many records chunks shrink to keep request payloads small
LARGE_VOLUME_THRESHOLD = 10_000
# Above this many records fewer dispatches run at once
MEDIUM_VOLUME_THRESHOLD = 5_000


@dataclass(frozen=True)
class ProcessingConfig:
    """
    Settings for one pipeline run.

    Attributes:
        chunk_size: Records per chunk; None sizes chunks by total volume
        concurrency: Maximum dispatch calls in flight at once
        retry_attempts: Total attempts for each dispatch, poll and fetch call
        retry_delay: Base delay between attempts
        retry_backoff: "linear", "exponential" or "constant" delay growth
        pause_between_chunks: Pacing sleep after each chunk's dispatch
        poll_interval: Minimum gap between two polls of the same task
        task_timeout: Maximum wall-clock time per task (None = unlimited)
        max_chunk_records: Largest payload the remote service accepts
    """

    chunk_size: Optional[int] = None
    concurrency: int = 3
    retry_attempts: int = 3
    retry_delay: float = 2.0
    retry_backoff: str = "linear"
    pause_between_chunks: float = 0.5
    poll_interval: float = 2.0
    task_timeout: Optional[float] = None
    max_chunk_records: int = 500

    def __post_init__(self):
        if self.chunk_size is not None and self.chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {self.chunk_size}")
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.retry_attempts < 1:
            raise ValueError(f"retry_attempts must be >= 1, got {self.retry_attempts}")
        if self.retry_backoff not in BACKOFF_STRATEGIES:
            raise ValueError(
                f"retry_backoff must be one of {BACKOFF_STRATEGIES}, got {self.retry_backoff!r}"
            )
        for name in ("retry_delay", "pause_between_chunks", "poll_interval"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")
        if self.task_timeout is not None and self.task_timeout <= 0:
            raise ValueError(f"task_timeout must be > 0, got {self.task_timeout}")
        if self.max_chunk_records < 1:
            raise ValueError(f"max_chunk_records must be >= 1, got {self.max_chunk_records}")
        if self.chunk_size is not None and self.chunk_size > self.max_chunk_records:
            raise ValueError(
                f"chunk_size {self.chunk_size} exceeds max_chunk_records {self.max_chunk_records}"
            )

    def with_overrides(self, **overrides: Any) -> "ProcessingConfig":
        """Copy with the given non-None fields replaced"""
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **values) if values else self

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def for_volume(cls, record_count: int, **overrides: Any) -> "ProcessingConfig":
        """
        Adaptive settings for a dataset of record_count records.

        Large uploads get smaller chunks, fewer concurrent dispatches and a
        longer pause between chunks to flatten the load on the remote side.
        """
        large = record_count > LARGE_VOLUME_THRESHOLD
        config = cls(
            chunk_size=50 if large else 100,
            concurrency=2 if record_count > MEDIUM_VOLUME_THRESHOLD else 3,
            pause_between_chunks=1.0 if large else 0.5,
        )
        return config.with_overrides(**overrides)

    @classmethod
    def for_strategy(cls, name: str, **overrides: Any) -> "ProcessingConfig":
        """
        Named preset: "fast", "balanced" or "conservative".

        Raises:
            ValueError: for an unknown strategy name
        """
        try:
            preset = STRATEGIES[name]
        except KeyError:
            raise ValueError(
                f"Unknown strategy {name!r}, expected one of {sorted(STRATEGIES)}"
            ) from None
        return preset.with_overrides(**overrides)

    @classmethod
    def from_env(cls, base: Optional["ProcessingConfig"] = None, environ=None) -> "ProcessingConfig":
        """
        Overlay REPORT_SYNC_* environment variables on base (default: defaults).

        Environment variables:
            REPORT_SYNC_CHUNK_SIZE, REPORT_SYNC_CONCURRENCY,
            REPORT_SYNC_RETRY_ATTEMPTS, REPORT_SYNC_RETRY_DELAY,
            REPORT_SYNC_RETRY_BACKOFF, REPORT_SYNC_PAUSE_BETWEEN_CHUNKS,
            REPORT_SYNC_POLL_INTERVAL, REPORT_SYNC_TASK_TIMEOUT,
            REPORT_SYNC_MAX_CHUNK_RECORDS
        """
        environ = os.environ if environ is None else environ
        base = base or cls()

        converters = {
            "chunk_size": int,
            "concurrency": int,
            "retry_attempts": int,
            "retry_delay": float,
            "retry_backoff": str,
            "pause_between_chunks": float,
            "poll_interval": float,
            "task_timeout": float,
            "max_chunk_records": int,
        }

        overrides = {}
        for name, convert in converters.items():
            raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is None or raw.strip() == "":
                continue
            try:
                overrides[name] = convert(raw.strip())
            except ValueError:
                raise ValueError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}") from None

        if overrides:
            logger.debug(f"Processing config overrides from environment: {overrides}")

        return base.with_overrides(**overrides)


STRATEGIES = {
    "fast": ProcessingConfig(
        chunk_size=150,
        concurrency=4,
        retry_attempts=2,
        retry_delay=1.0,
        pause_between_chunks=0.2,
    ),
    "balanced": ProcessingConfig(
        chunk_size=100,
        concurrency=3,
        retry_attempts=3,
        retry_delay=2.0,
        pause_between_chunks=0.5,
    ),
    "conservative": ProcessingConfig(
        chunk_size=50,
        concurrency=2,
        retry_attempts=4,
        retry_delay=3.0,
        pause_between_chunks=1.0,
    ),
}

"""
Pytest configuration and fixtures for report sync tests.
Provides an in-memory remote sync service and record factories.
"""

import asyncio
import itertools
from collections import deque
from typing import Callable, Iterable, Mapping, Optional, Sequence

import pytest

from report_sync.config import ProcessingConfig
from report_sync.models import Record, StoreRecord, TaskStatus, TaskStatusReport
from report_sync.remote import RemoteSyncService


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "e2e: mark test as end-to-end pipeline scenario")
    config.addinivalue_line("markers", "slow: mark test as slow running")


def make_records(count: int, prefix: str = "8925", quality_every: int = 3) -> list[Record]:
    """Records with unique serial numbers; every quality_every-th one is a quality SIM"""
    return [
        Record(
            serial_number=f"{prefix}{index:08d}",
            quality="Y" if quality_every and index % quality_every == 0 else "N",
            fields={"dealer": f"dealer-{index % 7}"},
        )
        for index in range(count)
    ]


def default_team(serial_number: str) -> Optional[str]:
    """Store lookup used by FakeSyncService: every 10th serial is unknown to the store"""
    number = int(serial_number[-4:])
    if number % 10 == 9:
        return None
    return ("Alpha", "Bravo", "Charlie")[number % 3]


class FakeTask:
    def __init__(self, task_id: str, records: Sequence[Record], script: Sequence[float], fail: bool):
        self.task_id = task_id
        self.records = list(records)
        self.script = list(script)
        self.fail = fail
        self.polls = 0


class FakeSyncService(RemoteSyncService):
    """
    In-memory remote sync service.

    Args:
        progress_script: Progress reported by successive polls while a task
            is running; the task completes on the poll after the script ends
        failing_serials: Tasks containing any of these serials end failed
        submit_errors / poll_errors / fetch_errors: Exceptions raised by
            successive calls (None entries let the call through)
        serial_submit_errors: serial -> exceptions raised by successive
            submits of the chunk holding that serial
        team_for: serial -> team, or None for serials unknown to the store
        submit_delay: Seconds each submit takes
        on_poll: Called with the running poll count after every poll
    """

    def __init__(
        self,
        progress_script: Sequence[float] = (50.0,),
        failing_serials: Iterable[str] = (),
        submit_errors: Iterable[Optional[Exception]] = (),
        poll_errors: Iterable[Optional[Exception]] = (),
        fetch_errors: Iterable[Optional[Exception]] = (),
        serial_submit_errors: Optional[Mapping[str, Iterable[Optional[Exception]]]] = None,
        team_for: Callable[[str], Optional[str]] = default_team,
        submit_delay: float = 0.0,
        on_poll: Optional[Callable[[int], None]] = None,
    ):
        self.progress_script = list(progress_script)
        self.failing_serials = set(failing_serials)
        self.submit_errors = deque(submit_errors)
        self.poll_errors = deque(poll_errors)
        self.fetch_errors = deque(fetch_errors)
        self.serial_submit_errors = {
            serial: deque(errors) for serial, errors in (serial_submit_errors or {}).items()
        }
        self.team_for = team_for
        self.submit_delay = submit_delay
        self.on_poll = on_poll

        self.tasks: dict[str, FakeTask] = {}
        self.submitted_chunks: list[list[str]] = []
        self.submission_order: list[str] = []
        self.submit_calls = 0
        self.poll_calls = 0
        self.fetch_calls = 0
        self.fetched_keys: list[str] = []
        self.active_submits = 0
        self.peak_active_submits = 0
        self.closed = False
        self._ids = itertools.count(1)

    async def submit(self, records: Sequence[Record]) -> str:
        self.submit_calls += 1
        self.submission_order.append(records[0].serial_number if records else "")
        self.active_submits += 1
        self.peak_active_submits = max(self.peak_active_submits, self.active_submits)
        try:
            await asyncio.sleep(self.submit_delay)
            if self.submit_errors:
                error = self.submit_errors.popleft()
                if error is not None:
                    raise error
            for record in records:
                pending = self.serial_submit_errors.get(record.serial_number)
                if pending:
                    error = pending.popleft()
                    if error is not None:
                        raise error

            task_id = f"task-{next(self._ids)}"
            fail = any(record.serial_number in self.failing_serials for record in records)
            self.tasks[task_id] = FakeTask(task_id, records, self.progress_script, fail)
            self.submitted_chunks.append([record.serial_number for record in records])
            return task_id
        finally:
            self.active_submits -= 1

    async def poll_once(self, task_id: str) -> TaskStatusReport:
        self.poll_calls += 1
        if self.on_poll is not None:
            self.on_poll(self.poll_calls)
        if self.poll_errors:
            error = self.poll_errors.popleft()
            if error is not None:
                raise error

        task = self.tasks[task_id]
        poll = task.polls
        task.polls += 1
        if poll < len(task.script):
            return TaskStatusReport(status=TaskStatus.RUNNING, progress=task.script[poll])
        if task.fail:
            return TaskStatusReport(status=TaskStatus.FAILED, progress=100.0, error="Duplicate SIM in batch")
        return TaskStatusReport(status=TaskStatus.COMPLETED, progress=100.0)

    async def fetch_by_keys(self, keys: Sequence[str]) -> list[StoreRecord]:
        self.fetch_calls += 1
        if self.fetch_errors:
            error = self.fetch_errors.popleft()
            if error is not None:
                raise error

        self.fetched_keys = list(keys)
        store_records = []
        for key in keys:
            team = self.team_for(key)
            if team is not None:
                store_records.append(
                    StoreRecord(serial_number=key, team=team, uploaded_by=f"{team.lower()}-lead")
                )
        return store_records

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def records() -> list[Record]:
    return make_records(25)


@pytest.fixture
def fake_service() -> FakeSyncService:
    return FakeSyncService()


@pytest.fixture
def fast_config() -> ProcessingConfig:
    """Settings without real waits"""
    return ProcessingConfig(
        chunk_size=10,
        concurrency=3,
        retry_attempts=3,
        retry_delay=0.0,
        pause_between_chunks=0.0,
        poll_interval=0.0,
    )

"""
Unit tests for task polling

Tests verify:
- Polling to completion and progress forwarding
- Remote failure, unknown status and timeout handling
- Retry of transport errors while polling
- Poll pacing and abort
"""

import asyncio
import time
from unittest.mock import AsyncMock

import pytest

from conftest import FakeSyncService, make_records
from report_sync.config import ProcessingConfig
from report_sync.control import CancellationHandle
from report_sync.errors import (
    ProtocolError,
    RunAbortedError,
    TaskFailedError,
    TaskTimeoutError,
    TransportError,
)
from report_sync.models import Task, TaskStatus
from report_sync.poller import TaskPoller
from report_sync.progress import TaskProgressed


async def submitted_task(service, count=5, chunk_index=0) -> Task:
    task_id = await service.submit(make_records(count))
    return Task(task_id=task_id, chunk_index=chunk_index, record_count=count)


class TestTaskPoller:
    """Test TaskPoller"""

    @pytest.mark.asyncio
    async def test_polls_until_completed(self, fast_config):
        service = FakeSyncService(progress_script=[10.0, 40.0, 80.0])
        events = []
        poller = TaskPoller(service, fast_config, CancellationHandle(), on_event=events.append)
        task = await submitted_task(service)

        result = await poller.poll(task)

        assert result is task
        assert task.status == TaskStatus.COMPLETED
        assert task.progress == 100.0
        assert service.poll_calls == 4
        assert [event.progress for event in events] == [10.0, 40.0, 80.0, 100.0]
        assert all(isinstance(event, TaskProgressed) for event in events)

    @pytest.mark.asyncio
    async def test_regressing_progress_is_forwarded_clamped(self, fast_config):
        service = FakeSyncService(progress_script=[60.0, 30.0, 150.0])
        events = []
        poller = TaskPoller(service, fast_config, CancellationHandle(), on_event=events.append)

        await poller.poll(await submitted_task(service))

        assert [event.progress for event in events] == [60.0, 30.0, 100.0, 100.0]

    @pytest.mark.asyncio
    async def test_remote_failure_raises_task_failed(self, fast_config):
        records = make_records(5)
        service = FakeSyncService(failing_serials=[records[2].serial_number])
        poller = TaskPoller(service, fast_config, CancellationHandle())
        task_id = await service.submit(records)
        task = Task(task_id=task_id, chunk_index=3, record_count=5)

        with pytest.raises(TaskFailedError, match="Duplicate SIM") as exc_info:
            await poller.poll(task)

        assert exc_info.value.chunk_index == 3
        assert exc_info.value.task_id == task_id
        assert task.status == TaskStatus.FAILED

    @pytest.mark.asyncio
    async def test_unknown_status_is_protocol_error(self, fast_config):
        service = FakeSyncService()
        service.poll_once = AsyncMock(side_effect=ProtocolError("Unrecognized task status 'lost'"))
        poller = TaskPoller(service, fast_config, CancellationHandle())
        task = Task(task_id="task-9", chunk_index=1, record_count=5)

        with pytest.raises(ProtocolError) as exc_info:
            await poller.poll(task)

        assert exc_info.value.task_id == "task-9"
        assert exc_info.value.chunk_index == 1
        assert service.poll_once.await_count == 1

    @pytest.mark.asyncio
    async def test_malformed_poll_result_is_protocol_error(self, fast_config):
        service = FakeSyncService()
        service.poll_once = AsyncMock(return_value={"status": "running"})
        poller = TaskPoller(service, fast_config, CancellationHandle())

        with pytest.raises(ProtocolError):
            await poller.poll(Task(task_id="task-1", chunk_index=0, record_count=1))

    @pytest.mark.asyncio
    async def test_transport_errors_while_polling_are_retried(self, fast_config):
        service = FakeSyncService(poll_errors=[TransportError("reset"), None, TransportError("reset")])
        poller = TaskPoller(service, fast_config, CancellationHandle())

        task = await poller.poll(await submitted_task(service))

        assert task.status == TaskStatus.COMPLETED
        assert service.poll_calls == 4

    @pytest.mark.asyncio
    async def test_persistent_transport_errors_fail_the_task(self, fast_config):
        service = FakeSyncService(poll_errors=[TransportError("down")] * 3)
        poller = TaskPoller(service, fast_config, CancellationHandle())

        with pytest.raises(TransportError):
            await poller.poll(await submitted_task(service))

    @pytest.mark.asyncio
    async def test_task_timeout(self):
        config = ProcessingConfig(chunk_size=5, poll_interval=0.01, task_timeout=0.05)
        service = FakeSyncService(progress_script=[10.0] * 1000)
        poller = TaskPoller(service, config, CancellationHandle())
        task = await submitted_task(service, chunk_index=2)

        with pytest.raises(TaskTimeoutError) as exc_info:
            await poller.poll(task)

        assert exc_info.value.chunk_index == 2
        assert exc_info.value.task_id == task.task_id

    @pytest.mark.asyncio
    async def test_first_poll_is_immediate_then_paced(self):
        config = ProcessingConfig(chunk_size=5, poll_interval=2.0)
        service = FakeSyncService(progress_script=[20.0, 70.0])
        sleep = AsyncMock()
        poller = TaskPoller(service, config, CancellationHandle(), sleep=sleep)

        await poller.poll(await submitted_task(service))

        # Three polls, a pacing sleep between each pair
        assert service.poll_calls == 3
        assert [c.args for c in sleep.call_args_list] == [(2.0,), (2.0,)]

    @pytest.mark.asyncio
    async def test_retry_after_transport_error_waits_poll_interval(self):
        config = ProcessingConfig(chunk_size=5, poll_interval=0.3, retry_delay=0.01)
        service = FakeSyncService(progress_script=[20.0], poll_errors=[None, TransportError("503")])
        sleep = AsyncMock()
        poller = TaskPoller(service, config, CancellationHandle(), sleep=sleep)

        task = await poller.poll(await submitted_task(service))

        assert task.status == TaskStatus.COMPLETED
        assert service.poll_calls == 3
        # Pacing sleep, then the retry sleep raised to the poll interval
        assert [c.args for c in sleep.call_args_list] == [(0.3,), (0.3,)]

    @pytest.mark.asyncio
    async def test_polls_never_closer_than_interval_across_retries(self):
        config = ProcessingConfig(chunk_size=5, poll_interval=0.1, retry_delay=0.0)
        poll_times = []
        service = FakeSyncService(
            progress_script=[20.0, 40.0],
            poll_errors=[None, TransportError("503"), TransportError("429")],
            on_poll=lambda count: poll_times.append(time.monotonic()),
        )
        poller = TaskPoller(service, config, CancellationHandle())

        await poller.poll(await submitted_task(service))

        gaps = [later - earlier for earlier, later in zip(poll_times, poll_times[1:])]
        assert len(gaps) == 4
        assert min(gaps) >= 0.09

    @pytest.mark.asyncio
    async def test_abort_stops_polling(self, fast_config):
        handle = CancellationHandle()
        service = FakeSyncService(
            progress_script=[10.0] * 100,
            on_poll=lambda count: handle.abort() if count == 3 else None,
        )
        poller = TaskPoller(service, fast_config, handle)

        with pytest.raises(RunAbortedError):
            await poller.poll(await submitted_task(service))

        assert service.poll_calls == 3

    @pytest.mark.asyncio
    async def test_paused_poller_waits_for_resume(self, fast_config):
        handle = CancellationHandle()
        service = FakeSyncService(progress_script=[10.0])
        poller = TaskPoller(service, fast_config, handle)
        task = await submitted_task(service)
        handle.pause()

        polling = asyncio.create_task(poller.poll(task))
        await asyncio.sleep(0.01)
        assert service.poll_calls == 0

        handle.resume()
        await polling
        assert task.status == TaskStatus.COMPLETED


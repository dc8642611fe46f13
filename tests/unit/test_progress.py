"""
Unit tests for progress aggregation

Tests verify:
- Percentage scale and per-chunk weighting
- Monotonic publication under out-of-order task progress
- ETA estimation
- Channel subscription, conflation and error isolation
"""

import asyncio

import pytest

from conftest import make_records
from report_sync.models import ProcessingProgress, ProgressStatus
from report_sync.partition import partition_records
from report_sync.progress import (
    ChunkDispatched,
    ChunkFailed,
    ChunkFinished,
    PhaseChanged,
    ProgressAggregator,
    ProgressChannel,
    RunStarted,
    StatusChanged,
    TaskProgressed,
)


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_aggregator(record_count=40, chunk_size=10, clock=None):
    channel = ProgressChannel()
    published = []
    channel.subscribe(published.append)
    chunks = partition_records(make_records(record_count), chunk_size)
    aggregator = ProgressAggregator(chunks, channel, clock=clock or FakeClock())
    return aggregator, published


class TestProgressAggregator:
    """Test ProgressAggregator"""

    def test_run_started_publishes_sync_baseline(self):
        aggregator, published = make_aggregator()

        aggregator.handle(RunStarted())

        assert published[-1].percentage == 5.0
        assert published[-1].status == ProgressStatus.PROCESSING
        assert published[-1].phase == "dispatching"
        assert published[-1].total_chunks == 4
        assert published[-1].total_records == 40

    def test_dispatch_acknowledgement_worth_a_fifth_of_chunk_share(self):
        aggregator, _ = make_aggregator()
        aggregator.handle(RunStarted())

        for index in range(4):
            aggregator.handle(ChunkDispatched(chunk_index=index, task_id=f"task-{index}"))

        # 5 + 75 * 0.2
        assert aggregator.percentage == pytest.approx(20.0)

    def test_chunks_weighted_by_record_count(self):
        # Chunks of 10, 10 and 5 records
        aggregator, _ = make_aggregator(record_count=25)
        aggregator.handle(RunStarted())

        aggregator.handle(ChunkFinished(chunk_index=2))

        assert aggregator.percentage == pytest.approx(5.0 + 75.0 * 5 / 25)

    def test_all_tasks_done_reaches_sync_end(self):
        aggregator, _ = make_aggregator()
        aggregator.handle(RunStarted())

        for index in range(4):
            aggregator.handle(TaskProgressed(chunk_index=index, progress=100.0))

        assert aggregator.percentage == pytest.approx(80.0)

    def test_regressing_task_progress_never_lowers_percentage(self):
        aggregator, published = make_aggregator()
        aggregator.handle(RunStarted())

        aggregator.handle(TaskProgressed(chunk_index=0, progress=90.0))
        high = aggregator.percentage
        aggregator.handle(TaskProgressed(chunk_index=0, progress=10.0))

        assert aggregator.percentage == high
        percentages = [snapshot.percentage for snapshot in published]
        assert percentages == sorted(percentages)

    def test_publishes_only_on_integer_rise_or_status_change(self):
        aggregator, published = make_aggregator(record_count=1000, chunk_size=1000)
        aggregator.handle(RunStarted())
        aggregator.handle(ChunkDispatched(chunk_index=0, task_id="task-1"))
        count = len(published)

        # 0.1% of one task moves the overall figure by well under one point
        aggregator.handle(TaskProgressed(chunk_index=0, progress=0.1))
        assert len(published) == count

        aggregator.handle(StatusChanged(ProgressStatus.PAUSED))
        assert len(published) == count + 1
        assert published[-1].status == ProgressStatus.PAUSED

    def test_fetch_and_merge_phases_follow_fixed_scale(self):
        aggregator, _ = make_aggregator()
        aggregator.handle(RunStarted())

        expected = {"fetching": 80.0, "fetched": 90.0, "merging": 90.0, "merged": 95.0}
        for phase, percentage in expected.items():
            aggregator.handle(PhaseChanged(phase))
            assert aggregator.percentage == percentage
            assert aggregator.snapshot.phase == phase

    def test_complete_publishes_final_snapshot(self):
        aggregator, published = make_aggregator()
        aggregator.handle(RunStarted())

        aggregator.complete()

        final = published[-1]
        assert final.percentage == 100.0
        assert final.status == ProgressStatus.COMPLETED
        assert final.estimated_time_remaining == 0.0

    def test_empty_run_complete_publishes_exactly_once(self):
        aggregator, published = make_aggregator(record_count=0)

        aggregator.complete()

        assert len(published) == 1
        assert published[0].percentage == 100.0
        assert published[0].total_records == 0

    def test_nothing_published_after_terminal_status(self):
        aggregator, published = make_aggregator()
        aggregator.handle(RunStarted())
        aggregator.handle(StatusChanged(ProgressStatus.ABORTED, "Operation aborted by user"))
        count = len(published)

        aggregator.handle(TaskProgressed(chunk_index=0, progress=100.0))
        aggregator.complete()

        assert len(published) == count
        assert published[-1].errors == ("Operation aborted by user",)

    def test_failed_chunks_count_as_done_but_not_processed(self):
        aggregator, _ = make_aggregator()
        aggregator.handle(RunStarted())

        aggregator.handle(ChunkFinished(chunk_index=0))
        aggregator.handle(ChunkFailed(chunk_index=1, message="Duplicate SIM in batch"))

        snapshot = aggregator.snapshot
        assert snapshot.current_chunk == 2
        assert snapshot.processed_records == 10
        assert snapshot.errors == ("Chunk 2: Duplicate SIM in batch",)

    def test_eta_unknown_before_progress(self):
        aggregator, _ = make_aggregator()
        aggregator.handle(RunStarted())

        assert aggregator.snapshot.estimated_time_remaining is None

    def test_eta_from_elapsed_time(self):
        clock = FakeClock(100.0)
        aggregator, _ = make_aggregator(clock=clock)
        aggregator.handle(RunStarted())

        clock.now = 110.0
        # Half of all chunks finished: 5 + 37.5 = 42.5%, i.e. 37.5 of 95 points of work
        aggregator.handle(ChunkFinished(chunk_index=0))
        aggregator.handle(ChunkFinished(chunk_index=1))

        expected = round(10.0 * (1 - 37.5 / 95) / (37.5 / 95), 1)
        assert aggregator.snapshot.estimated_time_remaining == expected

    def test_unknown_event_type(self):
        aggregator, _ = make_aggregator()

        with pytest.raises(TypeError):
            aggregator.handle(object())


class TestProgressChannel:
    """Test ProgressChannel"""

    def test_drops_lower_percentage(self):
        channel = ProgressChannel()
        received = []
        channel.subscribe(received.append)

        assert channel.publish(ProcessingProgress(percentage=40.0)) is True
        assert channel.publish(ProcessingProgress(percentage=30.0)) is False

        assert [p.percentage for p in received] == [40.0]
        assert channel.latest.percentage == 40.0

    def test_failing_subscriber_does_not_block_others(self):
        channel = ProgressChannel()
        received = []

        def broken(progress):
            raise RuntimeError("ui gone")

        channel.subscribe(broken)
        channel.subscribe(received.append)

        channel.publish(ProcessingProgress(percentage=10.0))

        assert len(received) == 1

    def test_unsubscribe(self):
        channel = ProgressChannel()
        received = []
        channel.subscribe(received.append)
        channel.unsubscribe(received.append)

        channel.publish(ProcessingProgress(percentage=10.0))

        assert received == []

    def test_closed_channel_drops_snapshots(self):
        channel = ProgressChannel()
        channel.close()

        assert channel.publish(ProcessingProgress(percentage=10.0)) is False

    @pytest.mark.asyncio
    async def test_updates_conflate_to_newest(self):
        channel = ProgressChannel()
        received = []

        async def consume():
            async for snapshot in channel.updates():
                received.append(snapshot.percentage)

        consumer = asyncio.create_task(consume())
        await asyncio.sleep(0)

        # Three publishes before the consumer runs again: only the newest is seen
        for percentage in (10.0, 20.0, 30.0):
            channel.publish(ProcessingProgress(percentage=percentage))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        channel.publish(ProcessingProgress(percentage=50.0))
        channel.close()
        await consumer

        assert received == [30.0, 50.0]

    @pytest.mark.asyncio
    async def test_updates_end_when_closed(self):
        channel = ProgressChannel()
        channel.close()

        received = [snapshot async for snapshot in channel.updates()]

        assert received == []

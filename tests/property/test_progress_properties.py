"""
Property-based tests for progress aggregation using Hypothesis.

Whatever order task progress, completions and failures arrive in, the
published percentage never decreases and stays within 0-100.
"""

from hypothesis import given, settings, strategies as st
from hypothesis.stateful import RuleBasedStateMachine, initialize, invariant, rule

from conftest import make_records
from report_sync.models import ProgressStatus
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


def build(record_count: int, chunk_size: int):
    channel = ProgressChannel()
    published = []
    channel.subscribe(published.append)
    chunks = partition_records(make_records(record_count), chunk_size)
    return ProgressAggregator(chunks, channel, clock=lambda: 0.0), published, len(chunks)


# Property: random event sequences publish non-decreasing percentages
@settings(max_examples=100)
@given(
    record_count=st.integers(min_value=1, max_value=200),
    chunk_size=st.integers(min_value=1, max_value=50),
    data=st.data(),
)
def test_published_percentages_never_decrease(record_count, chunk_size, data):
    aggregator, published, chunk_count = build(record_count, chunk_size)
    aggregator.handle(RunStarted())

    chunk_index = st.integers(min_value=0, max_value=chunk_count - 1)
    event = st.one_of(
        st.builds(ChunkDispatched, chunk_index=chunk_index, task_id=st.just("task")),
        st.builds(
            TaskProgressed,
            chunk_index=chunk_index,
            progress=st.floats(min_value=-50, max_value=150, allow_nan=False),
        ),
        st.builds(ChunkFinished, chunk_index=chunk_index),
        st.builds(ChunkFailed, chunk_index=chunk_index, message=st.just("failed")),
        st.builds(StatusChanged, st.sampled_from([ProgressStatus.PAUSED, ProgressStatus.PROCESSING])),
    )
    for item in data.draw(st.lists(event, max_size=60)):
        aggregator.handle(item)

    percentages = [snapshot.percentage for snapshot in published]
    assert percentages == sorted(percentages)
    assert all(0.0 <= p <= 80.0 for p in percentages)


class ProgressMachine(RuleBasedStateMachine):
    """Drives one aggregator through an arbitrary run and checks it after every step"""

    @initialize(record_count=st.integers(min_value=1, max_value=120), chunk_size=st.integers(1, 30))
    def start(self, record_count, chunk_size):
        self.aggregator, self.published, self.chunk_count = build(record_count, chunk_size)
        self.aggregator.handle(RunStarted())
        self.last = self.aggregator.percentage

    @rule(index=st.integers(min_value=0, max_value=1000), progress=st.floats(0, 100))
    def task_progress(self, index, progress):
        self.aggregator.handle(TaskProgressed(chunk_index=index % self.chunk_count, progress=progress))

    @rule(index=st.integers(min_value=0, max_value=1000))
    def chunk_finished(self, index):
        self.aggregator.handle(ChunkFinished(chunk_index=index % self.chunk_count))

    @rule(phase=st.sampled_from(["polling", "fetching", "fetched", "merging", "merged"]))
    def phase(self, phase):
        self.aggregator.handle(PhaseChanged(phase))

    @rule()
    def complete(self):
        self.aggregator.complete()

    @invariant()
    def monotonic(self):
        assert self.aggregator.percentage >= self.last
        assert self.aggregator.percentage <= 100.0
        self.last = self.aggregator.percentage

    @invariant()
    def completed_is_final(self):
        if self.aggregator.snapshot.status == ProgressStatus.COMPLETED:
            assert self.aggregator.percentage == 100.0


TestProgressMachine = ProgressMachine.TestCase

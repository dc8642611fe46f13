"""
Property-based tests for partitioning and report merge using Hypothesis.

Tests invariants that should hold for all inputs:
- Chunk count and sizes
- Record order and coverage
- Merge totals independent of store answer order
"""

import math

from hypothesis import given, settings, strategies as st

from conftest import make_records
from report_sync.models import UNKNOWN_TEAM, StoreRecord
from report_sync.partition import partition_records, verify_partition
from report_sync.report import build_merged_report


# Property: N records in chunks of C give ceil(N / C) chunks covering every record once, in order
@given(
    record_count=st.integers(min_value=0, max_value=600),
    chunk_size=st.integers(min_value=1, max_value=150),
)
def test_partition_covers_records_in_order(record_count: int, chunk_size: int):
    records = make_records(record_count)

    chunks = partition_records(records, chunk_size)

    assert len(chunks) == math.ceil(record_count / chunk_size)
    assert sum(len(chunk) for chunk in chunks) == record_count
    assert [r for chunk in chunks for r in chunk.records] == records
    verify_partition(chunks, records)


# Property: every chunk is full except possibly the last
@given(
    record_count=st.integers(min_value=1, max_value=600),
    chunk_size=st.integers(min_value=1, max_value=150),
)
def test_only_last_chunk_may_be_short(record_count: int, chunk_size: int):
    chunks = partition_records(make_records(record_count), chunk_size)

    assert all(len(chunk) == chunk_size for chunk in chunks[:-1])
    assert 1 <= len(chunks[-1]) <= chunk_size
    assert [chunk.index for chunk in chunks] == list(range(len(chunks)))
    assert {chunk.total for chunk in chunks} == {len(chunks)}


# Property: merged totals do not depend on the order the store answers in
@settings(max_examples=50)
@given(
    record_count=st.integers(min_value=0, max_value=120),
    known=st.data(),
)
def test_merge_counts_are_consistent(record_count: int, known):
    records = make_records(record_count)
    known_serials = known.draw(
        st.lists(st.sampled_from([r.serial_number for r in records]), unique=True)
        if records else st.just([])
    )
    teams = known.draw(
        st.lists(
            st.sampled_from(["Alpha", "Bravo", "Charlie"]),
            min_size=len(known_serials),
            max_size=len(known_serials),
        )
    )
    store_records = [StoreRecord(serial, team) for serial, team in zip(known_serials, teams)]

    report = build_merged_report(records, store_records)
    shuffled = build_merged_report(records, list(reversed(store_records)))

    assert report.total_count == record_count
    assert report.matched_count == len(known_serials)
    assert report.matched_count + report.unmatched_count == report.total_count
    assert sum(len(group.records) for group in report.groups) == record_count
    assert [g.to_dict(False) for g in report.groups] == [g.to_dict(False) for g in shuffled.groups]

    unknown = report.group(UNKNOWN_TEAM)
    if report.unmatched_count:
        assert unknown is not None and unknown.unmatched_count == report.unmatched_count

    matched_counts = [group.matched_count for group in report.groups]
    assert matched_counts == sorted(matched_counts, reverse=True)

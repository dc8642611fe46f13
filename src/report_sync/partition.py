"""
Chunk partitioning for bulk sync runs.

Splits an ordered record set into contiguous chunks. Record order is kept
within and across chunks, so concatenating the chunks by index gives back
the input exactly.
"""

import logging
import math
from typing import Sequence

from .config import LARGE_VOLUME_THRESHOLD
from .errors import InvariantViolation
from .models import Chunk, Record

logger = logging.getLogger(__name__)


def choose_chunk_size(
    total_records: int,
    base_chunk_size: int = 100,
    large_volume_threshold: int = LARGE_VOLUME_THRESHOLD,
    large_volume_chunk_size: int = 50,
) -> int:
    """
    Chunk size for a dataset of total_records records.

    Very large datasets get smaller chunks so individual request payloads
    stay bounded.
    """
    if total_records > large_volume_threshold:
        return large_volume_chunk_size
    return base_chunk_size


def partition_records(records: Sequence[Record], chunk_size: int) -> list[Chunk]:
    """
    Split records into ceil(N / chunk_size) ordered chunks.

    Args:
        records: Input records in upload order
        chunk_size: Maximum records per chunk (>= 1)

    Returns:
        Chunks in index order; empty list when records is empty

    Raises:
        ValueError: if chunk_size < 1
    """
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")

    total = math.ceil(len(records) / chunk_size)
    return [
        Chunk(
            index=index,
            total=total,
            records=tuple(records[index * chunk_size:(index + 1) * chunk_size]),
        )
        for index in range(total)
    ]


def verify_partition(chunks: Sequence[Chunk], records: Sequence[Record]) -> None:
    """
    Check that chunks cover records exactly once and in order.

    Raises:
        InvariantViolation: if a record was lost, duplicated or reordered,
            or chunk indices are not 0..n-1
    """
    for position, chunk in enumerate(chunks):
        if chunk.index != position or chunk.total != len(chunks):
            raise InvariantViolation(
                f"Chunk at position {position} is tagged {chunk.index}/{chunk.total}"
            )
        if not chunk.records:
            raise InvariantViolation(f"Chunk {chunk.label} is empty")

    sizes = sum(len(chunk) for chunk in chunks)
    if sizes != len(records):
        raise InvariantViolation(
            f"Chunk sizes sum to {sizes} but the run has {len(records)} records"
        )

    flattened = (record for chunk in chunks for record in chunk.records)
    for position, (expected, actual) in enumerate(zip(records, flattened)):
        if expected.serial_number != actual.serial_number:
            raise InvariantViolation(
                f"Record {position} out of order: expected {expected.serial_number}, "
                f"found {actual.serial_number}"
            )

    logger.debug(f"Partition verified: {len(records)} records in {len(chunks)} chunks")

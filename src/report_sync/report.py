"""
Report merge for completed runs.

Pairs every input record with the authoritative store record that shares
its serial number and groups the result by owning team. Merging is keyed
by serial number, so the order in which tasks finished does not matter.
"""

import logging
from typing import Iterable, Sequence

from .models import (
    UNKNOWN_TEAM,
    GroupReport,
    MergedReport,
    ReconciledRecord,
    Record,
    StoreRecord,
)

logger = logging.getLogger(__name__)


def reconcile_record(record: Record, store_record: StoreRecord | None) -> ReconciledRecord:
    """Pair one input record with its store record, if any"""
    if store_record is None:
        return ReconciledRecord(
            record=record,
            matched=False,
            quality=record.is_quality,
            team=UNKNOWN_TEAM,
            uploaded_by=UNKNOWN_TEAM,
        )
    return ReconciledRecord(
        record=record,
        matched=True,
        quality=record.is_quality,
        team=store_record.team or UNKNOWN_TEAM,
        uploaded_by=store_record.uploaded_by or UNKNOWN_TEAM,
    )


def group_by_team(records: Iterable[ReconciledRecord]) -> list[GroupReport]:
    """
    Group reconciled records by team.

    Groups keep the input order of their records and are sorted by matched
    count (descending), then by team name.
    """
    teams: dict[str, list[ReconciledRecord]] = {}
    for record in records:
        teams.setdefault(record.team, []).append(record)

    groups = [
        GroupReport(
            team=team,
            records=tuple(members),
            matched_count=sum(1 for r in members if r.matched),
            quality_count=sum(1 for r in members if r.quality),
        )
        for team, members in teams.items()
    ]
    groups.sort(key=lambda group: (-group.matched_count, group.team))
    return groups


def build_merged_report(
    records: Sequence[Record],
    store_records: Iterable[StoreRecord],
) -> MergedReport:
    """
    Build the final report of a run.

    Args:
        records: Input records, in input order
        store_records: Authoritative records fetched for the input keys;
            records for keys that were not requested are ignored

    Returns:
        MergedReport with one ReconciledRecord per input record
    """
    by_serial: dict[str, StoreRecord] = {}
    for store_record in store_records:
        if store_record.serial_number in by_serial:
            logger.warning(
                f"Store returned serial {store_record.serial_number} more than once, "
                f"keeping the first"
            )
            continue
        by_serial[store_record.serial_number] = store_record

    reconciled = tuple(
        reconcile_record(record, by_serial.get(record.serial_number)) for record in records
    )
    matched = sum(1 for r in reconciled if r.matched)
    quality = sum(1 for r in reconciled if r.quality)

    report = MergedReport(
        records=reconciled,
        groups=tuple(group_by_team(reconciled)),
        matched_count=matched,
        quality_count=quality,
        unmatched_count=len(reconciled) - matched,
        total_count=len(reconciled),
    )
    logger.info(
        f"Merged report: {report.total_count} records, {report.matched_count} matched, "
        f"{report.unmatched_count} unmatched, {len(report.groups)} teams"
    )
    return report

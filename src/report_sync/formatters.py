"""
Report formatting and export utilities.

This module renders a merged report as JSON, CSV (one row per record) or
console text.
"""

import csv
import json
from typing import Any

from .models import MergedReport

CSV_COLUMNS = [
    "simSerialNumber",
    "team",
    "uploadedBy",
    "matched",
    "qualitySim",
    "quality",
]


def report_to_dict(report: MergedReport | dict[str, Any], include_records: bool = True) -> dict[str, Any]:
    if isinstance(report, MergedReport):
        return report.to_dict(include_records=include_records)
    return report


def export_report_json(report: MergedReport | dict[str, Any], output_path: str) -> None:
    """
    Export report to JSON file

    Args:
        report: MergedReport or its dictionary form
        output_path: Path to output file
    """
    with open(output_path, 'w') as f:
        json.dump(report_to_dict(report), f, indent=2, default=str)


def export_report_csv(report: MergedReport | dict[str, Any], output_path: str) -> None:
    """
    Export report to CSV file, one row per reconciled record

    Extra source columns are appended after the fixed columns, in the order
    they are first seen.
    """
    data = report_to_dict(report)
    rows = [row for group in data.get("groups", []) for row in group.get("records", [])]

    extra_columns: list[str] = []
    for row in rows:
        for key in row:
            if key not in CSV_COLUMNS and key not in extra_columns:
                extra_columns.append(key)

    with open(output_path, 'w', newline='') as f:
        writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS + extra_columns, restval="")
        writer.writeheader()
        for row in rows:
            writer.writerow(row)


def format_report_console(report: MergedReport | dict[str, Any]) -> str:
    """
    Format report for console output

    Returns:
        Formatted string for console display
    """
    data = report_to_dict(report, include_records=False)
    lines = []

    lines.append("=" * 80)
    lines.append("SIM SALES SYNC REPORT")
    lines.append("=" * 80)
    lines.append(f"Generated: {data.get('generated_at', '')}")
    lines.append(f"Total Records: {data['total']:,}")
    lines.append(f"Matched: {data['matched']:,}")
    lines.append(f"Unmatched: {data['unmatched']:,}")
    lines.append(f"Quality SIMs: {data['quality']:,}")
    lines.append("")

    if data["groups"]:
        lines.append("TEAMS")
        lines.append("-" * 80)
        lines.append(f"{'Team':<40}{'Total':>10}{'Matched':>10}{'Quality':>10}{'Unmatched':>10}")
        for group in data["groups"]:
            lines.append(
                f"{group['team'][:39]:<40}{group['total']:>10,}{group['matched']:>10,}"
                f"{group['quality']:>10,}{group['unmatched']:>10,}"
            )
        lines.append("")

    lines.append("=" * 80)

    return "\n".join(lines)

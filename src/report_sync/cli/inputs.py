"""
Loading of uploaded record files for the CLI.

CSV files need a header row; JSON files hold either a list of objects or
an object with a "records" list.
"""

import csv
import json
import logging
from pathlib import Path
from typing import Any

from ..errors import InvalidInputError
from ..models import DEFAULT_KEY_FIELD, Record

logger = logging.getLogger(__name__)


def _read_rows(path: Path) -> list[dict[str, Any]]:
    suffix = path.suffix.lower()

    if suffix == ".csv":
        with open(path, newline='', encoding='utf-8-sig') as f:
            return [dict(row) for row in csv.DictReader(f)]

    if suffix == ".json":
        with open(path, encoding='utf-8') as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get("records")
        if not isinstance(data, list) or not all(isinstance(row, dict) for row in data):
            raise InvalidInputError(f"{path} must contain a list of record objects")
        return data

    raise InvalidInputError(f"Unsupported input format {suffix!r} (expected .csv or .json)")


def load_records(path: str, key_field: str = DEFAULT_KEY_FIELD) -> list[Record]:
    """
    Read an uploaded record file

    Args:
        path: CSV or JSON file
        key_field: Column holding the serial number

    Returns:
        Records in file order

    Raises:
        InvalidInputError: on unsupported files or rows without a serial number
    """
    rows = _read_rows(Path(path))
    records = [Record.from_mapping(row, key_field=key_field) for row in rows]
    logger.info(f"Loaded {len(records)} records from {path}")
    return records

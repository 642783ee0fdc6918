"""Read the participant CSV with normalized headers."""

from __future__ import annotations

import csv
import logging
import os
from typing import TextIO

from ..core.errors import SourceDataError
from ..core.models import CsvRow
from ..shared.text_utils import normalize_header

logger = logging.getLogger(__name__)


def read_csv_stream(stream: TextIO, source_name: str = "<stream>") -> list[CsvRow]:
    """Parse a CSV stream into rows keyed by normalized header.

    Raises:
        SourceDataError: no header, no data rows, or malformed CSV
    """
    try:
        reader = csv.DictReader(stream)
        if not reader.fieldnames:
            raise SourceDataError(f"Source CSV {source_name} has no header row")
        headers = [normalize_header(name) for name in reader.fieldnames]
        reader.fieldnames = headers
        rows: list[CsvRow] = [dict(row) for row in reader]
    except csv.Error as e:
        raise SourceDataError(f"Source CSV {source_name} is malformed: {e}") from e

    if not rows:
        raise SourceDataError(f"Source CSV {source_name} has no data rows")

    # Rows longer than the header collect extra cells under the None key
    for row in rows:
        row.pop(None, None)  # type: ignore[call-overload]

    logger.info(f"Loaded {len(rows)} rows with {len(headers)} columns from {source_name}")
    return rows


def read_csv_rows(path: str) -> list[CsvRow]:
    """Read the source CSV file at path.

    Raises:
        SourceDataError: the file is missing, unreadable, or has no data rows
    """
    if not os.path.isfile(path):
        raise SourceDataError(f"Source CSV not found: {path}")

    try:
        with open(path, encoding="utf-8-sig", newline="") as f:
            return read_csv_stream(f, source_name=path)
    except (OSError, UnicodeDecodeError) as e:
        raise SourceDataError(f"Source CSV {path} could not be read: {e}") from e

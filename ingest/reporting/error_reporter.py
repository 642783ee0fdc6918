"""CSV error report for rows that failed to ingest."""

from __future__ import annotations

import csv
import logging
import os
from datetime import UTC, datetime

from ..core.constants import ERROR_REPORT_HEADERS, NO_EMAIL_PLACEHOLDER, UNKNOWN_PARTICIPANT_ID
from ..core.models import ErrorRecord

logger = logging.getLogger(__name__)


def default_report_path() -> str:
    """Timestamped report name in the working directory."""
    timestamp = datetime.now(UTC).isoformat(timespec="milliseconds").replace(":", "-").replace(".", "-")
    return f"migration-errors-{timestamp}.csv"


class CsvErrorReporter:
    """Collects failing rows and writes them as a CSV report.

    Implements the ErrorCollector protocol.
    """

    def __init__(self, output_path: str | None = None):
        self.output_path = output_path
        self._errors: list[ErrorRecord] = []

    def log_error(self, participant_id: str, email: str, error: str, row_number: int | None = None) -> None:
        self._errors.append(
            ErrorRecord(
                participant_id=participant_id or UNKNOWN_PARTICIPANT_ID,
                email=email or NO_EMAIL_PLACEHOLDER,
                error=error,
                row_number=row_number,
            )
        )

    def get_errors(self) -> list[ErrorRecord]:
        return list(self._errors)

    def get_error_count(self) -> int:
        return len(self._errors)

    def clear(self) -> None:
        self._errors.clear()

    def save_error_report(self, output_path: str | None = None) -> str:
        """Write the report and return its path.

        Returns an empty string, writing nothing, when no errors were logged.
        """
        if not self._errors:
            logger.info("No errors to save - skipping error report generation")
            return ""

        path = output_path or self.output_path or default_report_path()
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        timestamp = datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
        with open(path, "w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(ERROR_REPORT_HEADERS)
            for record in self._errors:
                writer.writerow(
                    [
                        record.participant_id,
                        record.email,
                        "" if record.row_number is None else record.row_number,
                        record.error,
                        timestamp,
                    ]
                )

        logger.info(f"Error report with {len(self._errors)} error(s) saved to: {os.path.abspath(path)}")
        return path

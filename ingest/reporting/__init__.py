"""Error collection and the durable CSV error report."""

from __future__ import annotations

from .error_reporter import CsvErrorReporter

__all__ = ["CsvErrorReporter"]

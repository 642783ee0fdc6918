"""Source CSV loading."""

from __future__ import annotations

from .csv_source import read_csv_rows, read_csv_stream

__all__ = ["read_csv_rows", "read_csv_stream"]

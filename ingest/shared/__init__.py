"""Shared helpers for the ingest pipeline."""

from __future__ import annotations

from .text_utils import (
    create_cache_key,
    format_error,
    is_not_available,
    normalize_header,
    safe_trim,
    value_or_none,
    to_boolean,
    to_number,
)

__all__ = [
    "create_cache_key",
    "format_error",
    "is_not_available",
    "normalize_header",
    "safe_trim",
    "value_or_none",
    "to_boolean",
    "to_number",
]

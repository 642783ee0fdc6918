"""Value conversion and header normalization utilities."""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable, Mapping
from typing import Any

from ..core.constants import CACHE_KEY_SEPARATOR, NOT_AVAILABLE_TOKENS

_NON_ALNUM = re.compile(r"[^a-z0-9_]+")
_EDGE_UNDERSCORES = re.compile(r"^_+|_+$")
_LINE_BREAKS = re.compile(r"[\r\n]+")


def normalize_header(header: str) -> str:
    """Normalize a CSV header so field-name matching is stable.

    Lowercases, strips diacritics, collapses runs of anything outside
    [a-z0-9_] into a single underscore and trims edge underscores.
    Idempotent: normalize_header(normalize_header(h)) == normalize_header(h).

    Examples:
        "Año Escolar" -> "ano_escolar"
        " Periodo de Implementación " -> "periodo_de_implementacion"
        "Modalidad: Asist 1" -> "modalidad_asist_1"
    """
    decomposed = unicodedata.normalize("NFD", header.strip().lower())
    without_marks = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    collapsed = _NON_ALNUM.sub("_", without_marks)
    return _EDGE_UNDERSCORES.sub("", collapsed)


def create_cache_key(parts: Iterable[Any], separator: str = CACHE_KEY_SEPARATOR) -> str:
    """Join key parts into a natural key, dropping None parts.

    Examples:
        ["mod1", "42"] -> "mod1|42"
        ["Impl", "2024-2025", "A"] -> "Impl|2024-2025|A"
    """
    return separator.join(str(part) for part in parts if part is not None)


def to_boolean(value: Any) -> bool:
    """Convert CSV values like "true"/"1" to bool; non-strings use truthiness."""
    if not isinstance(value, str):
        return bool(value)
    return value.strip().lower() in ("true", "1")


def to_number(value: Any) -> float | int | None:
    """Convert a value to a number, returning None for blank or invalid input."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if not isinstance(value, str):
        return None

    trimmed = value.strip()
    if not trimmed:
        return None
    try:
        number = float(trimmed)
    except ValueError:
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return int(number) if number.is_integer() else number


def safe_trim(value: Any) -> str | None:
    """Trim a value to a string, returning None for None or blank input."""
    if value is None:
        return None
    return str(value).strip() or None


def is_not_available(value: Any) -> bool:
    """True for None, blank strings and the 'NA'/'N/A' tokens of the export."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip().upper() in NOT_AVAILABLE_TOKENS
    return False


def value_or_none(value: Any) -> Any:
    """Return the value unless it is a 'not available' token."""
    return None if is_not_available(value) else value


def format_error(error: BaseException | str | Any, context: Mapping[str, Any] | None = None) -> str:
    """Format an error as a single line, with optional key=value context.

    Strapi errors carry the server's error message; plain exceptions use str().
    """
    if isinstance(error, BaseException):
        message = str(error) or type(error).__name__
    elif isinstance(error, str):
        message = error
    elif error is None:
        message = "Unknown error"
    else:
        message = repr(error)

    message = _LINE_BREAKS.sub(" ", message).strip()

    if context:
        context_str = ", ".join(f"{key}={value}" for key, value in context.items())
        message = f"{message} (Context: {context_str})"

    return message

"""Structured error taxonomy for Strapi calls.

Every failure leaving StrapiClient is one of these types, so callers branch
on the exception class instead of parsing response text."""

from __future__ import annotations

from typing import Any

# Substrings of Strapi/Postgres error messages reporting a duplicate key
UNIQUE_VIOLATION_MARKERS = ("unique constraint", "must be unique")


class StrapiError(Exception):
    """Base class for every Strapi client failure"""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        payload: Any = None,
        endpoint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload
        self.endpoint = endpoint


class ConflictError(StrapiError):
    """Creation rejected because the record already exists (uniqueness violation)"""


class NotFoundError(StrapiError):
    """The collection or record does not exist (404)"""


class StrapiNetworkError(StrapiError):
    """Connection failure or timeout before a response was received"""


class StrapiAPIError(StrapiError):
    """Any other non-2xx response"""


def extract_error_message(payload: Any) -> str | None:
    """Pull the human-readable message out of a Strapi error body.

    Strapi v4 responds with {"data": null, "error": {"status", "name", "message", "details"}}.
    """
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str):
            return message
    message = payload.get("message")
    return message if isinstance(message, str) else None


def is_unique_violation(message: str | None) -> bool:
    """True when an error message reports a duplicate key."""
    if not message:
        return False
    lowered = message.lower()
    return any(marker in lowered for marker in UNIQUE_VIOLATION_MARKERS)


def classify_http_error(status_code: int, payload: Any, text: str, endpoint: str) -> StrapiError:
    """Translate an HTTP error response into the matching StrapiError subclass."""
    message = extract_error_message(payload) or text or f"HTTP {status_code}"
    summary = f"{endpoint}: {status_code} - {message}"

    if is_unique_violation(message):
        return ConflictError(summary, status_code=status_code, payload=payload, endpoint=endpoint)
    if status_code == 404:
        return NotFoundError(summary, status_code=status_code, payload=payload, endpoint=endpoint)
    return StrapiAPIError(summary, status_code=status_code, payload=payload, endpoint=endpoint)

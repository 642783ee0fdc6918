"""Protocols for the collaborators the pipeline consumes.

These define the narrow contracts of the error sink and the Strapi client,
enabling loose coupling and testability."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from .models import ErrorRecord


class ErrorCollector(Protocol):
    """Sink for failing rows and the durable error report"""

    def log_error(self, participant_id: str, email: str, error: str, row_number: int | None = None) -> None:
        """Record one failing row"""
        ...

    def get_errors(self) -> list[ErrorRecord]:
        """Return a copy of every recorded error"""
        ...

    def save_error_report(self, output_path: str | None = None) -> str:
        """Persist the report and return its location ('' when nothing was written)"""
        ...


class RecordClient(Protocol):
    """Synchronous collection-oriented REST client (see strapi.client.StrapiClient)"""

    def find_first(self, collection: str, filters: Mapping[str, Any]) -> dict[str, Any] | None:
        """Return the first record matching all equality filters, or None"""
        ...

    def list_page(self, collection: str, page: int, page_size: int, fields: list[str]) -> list[dict[str, Any]]:
        """Return one page of records restricted to the given fields"""
        ...

    def create(self, collection: str, data: Mapping[str, Any]) -> dict[str, Any]:
        """Create a record and return it (including its id)"""
        ...

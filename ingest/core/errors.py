"""Exceptions raised by the ingest pipeline."""

from __future__ import annotations


class IngestError(Exception):
    """Base class for ingest errors"""


class SourceDataError(IngestError):
    """The primary source CSV is missing, unreadable, or empty.

    Fatal: no rows can be processed without it.
    """


class MissingIdentifiersError(IngestError):
    """A row could not resolve its participant or implementation id"""

    def __init__(self, external_id: str | None, participant_id: int | None, implementation_id: int | None) -> None:
        self.external_id = external_id
        self.participant_id = participant_id
        self.implementation_id = implementation_id
        super().__init__(
            f"Missing critical identifiers for participant {external_id}. "
            f"ParticipantID: {participant_id}, ImplementationID: {implementation_id}"
        )


class CacheKeyConflictError(IngestError, ValueError):
    """A cache key was set again with a different id"""

    def __init__(self, cache_name: str, key: str, existing_id: int, new_id: int) -> None:
        self.cache_name = cache_name
        self.key = key
        self.existing_id = existing_id
        self.new_id = new_id
        super().__init__(f"Cache '{cache_name}' already maps '{key}' to {existing_id}; refusing to remap to {new_id}")

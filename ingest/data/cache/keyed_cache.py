"""Per-type natural-key caches for one ingest run.

Every entity resolved or created during a run is recorded as
natural key -> remote id in the KeyedCache of its EntityType. A
CacheContext owns one cache per type and is created fresh for each run,
so nothing leaks between runs or between tests."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Iterator
from typing import Any

from ...core.constants import BULK_PRELOAD_PAGE_SIZE, CACHE_KEY_SEPARATOR
from ...core.errors import CacheKeyConflictError
from ...core.interfaces import RecordClient
from ...core.models import CacheValidation, EntityType

logger = logging.getLogger(__name__)


def _record_field(record: dict[str, Any], field_name: str) -> Any:
    """Read a field from a flat (v5) or attributes-wrapped (v4) record."""
    if field_name in record:
        return record[field_name]
    attributes = record.get("attributes")
    if isinstance(attributes, dict):
        return attributes.get(field_name)
    return None


class KeyedCache:
    """Append-only mapping of natural key -> remote id for one entity type"""

    def __init__(self, entity_type: EntityType):
        self.entity_type = entity_type
        self._entries: dict[str, int] = {}

    @property
    def name(self) -> str:
        return self.entity_type.value

    def has(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> int | None:
        return self._entries.get(key)

    def set(self, key: str, entity_id: int) -> None:
        """Record key -> id.

        Setting the same id again is a no-op. A different id for an existing
        key means two remote records share a natural key, which the run
        cannot reconcile.

        Raises:
            CacheKeyConflictError: key is already mapped to another id
        """
        existing = self._entries.get(key)
        if existing is not None and existing != entity_id:
            raise CacheKeyConflictError(self.name, key, existing, entity_id)
        self._entries[key] = entity_id

    def bulk_set(self, entries: Iterable[tuple[str, int]]) -> None:
        for key, entity_id in entries:
            self.set(key, entity_id)

    def keys(self) -> list[str]:
        return list(self._entries.keys())

    def values(self) -> list[int]:
        return list(self._entries.values())

    def items(self) -> list[tuple[str, int]]:
        return list(self._entries.items())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    async def bulk_preload(
        self,
        client: RecordClient,
        key_field: str,
        page_size: int = BULK_PRELOAD_PAGE_SIZE,
    ) -> int:
        """Load every remote record of this type, keyed by key_field.

        Pages through the collection until an empty page is returned. Records
        whose key field is not a string are ignored. When two remote records
        share a key the first id is kept and the duplicate is logged. Request
        errors propagate.

        Returns:
            Number of entries added or confirmed
        """
        logger.debug(f"Preloading {self.name} keyed by '{key_field}'")
        fields = ["id", key_field]
        loaded = 0
        page = 1

        while True:
            records = await asyncio.to_thread(client.list_page, self.entity_type.endpoint, page, page_size, fields)
            if not records:
                break

            for record in records:
                key = _record_field(record, key_field)
                if not isinstance(key, str) or record.get("id") is None:
                    continue

                entity_id = int(record["id"])
                existing = self._entries.get(key)
                if existing is not None and existing != entity_id:
                    logger.warning(
                        f"Duplicate {self.name} key '{key}' in remote data: keeping id {existing}, ignoring {entity_id}"
                    )
                    continue

                self._entries[key] = entity_id
                loaded += 1

            page += 1

        logger.info(f"Preloaded {loaded} {self.name} from {page - 1} page(s)")
        return loaded


class CacheContext:
    """One KeyedCache per EntityType, scoped to a single run"""

    def __init__(self) -> None:
        self._caches: dict[EntityType, KeyedCache] = {entity_type: KeyedCache(entity_type) for entity_type in EntityType}

    def for_type(self, entity_type: EntityType) -> KeyedCache:
        return self._caches[entity_type]

    def stats(self) -> dict[str, int]:
        """Entry count per entity type"""
        return {entity_type.value: len(cache) for entity_type, cache in self._caches.items()}

    def log_stats(self, context: str = "") -> None:
        prefix = f"[{context}] " if context else ""
        summary = ", ".join(f"{name}={count}" for name, count in self.stats().items())
        logger.info(f"{prefix}Cache contents: {summary}")

    def export(self) -> dict[str, dict[str, int]]:
        """Snapshot of every cache, for debugging output"""
        return {entity_type.value: dict(cache.items()) for entity_type, cache in self._caches.items()}

    def validate(self) -> CacheValidation:
        """Check that the parent entities the rows depend on are present."""
        issues: list[str] = []

        if len(self.for_type(EntityType.PROGRAM)) == 0:
            issues.append("No programs cached")
        if len(self.for_type(EntityType.IMPLEMENTATION)) == 0:
            issues.append("No implementations cached")
        if len(self.for_type(EntityType.SURVEY)) == 0:
            issues.append("No surveys cached")

        # Module keys end with the owning implementation id
        implementation_ids = {str(entity_id) for entity_id in self.for_type(EntityType.IMPLEMENTATION).values()}
        orphaned = [
            key
            for key in self.for_type(EntityType.MODULE).keys()
            if key.rsplit(CACHE_KEY_SEPARATOR, 1)[-1] not in implementation_ids
        ]
        if orphaned:
            issues.append(f"{len(orphaned)} module(s) reference an uncached implementation")

        return CacheValidation(is_valid=not issues, issues=issues)

"""Generic get-or-create resolution of entities by natural key.

Resolution order for one (entity type, natural key):
    1. Cached id -> returned without any request
    2. Equality search (unless lookups are skipped for this type)
    3. No create payload -> None
    4. Create; on a uniqueness conflict search exactly once more

A key is therefore created at most once per run and costs at most three
requests (search, create, re-search)."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any

from strapi.errors import ConflictError, StrapiError

from ..core.interfaces import RecordClient
from ..core.models import EntityType
from ..data.cache.keyed_cache import CacheContext
from ..shared.text_utils import format_error

logger = logging.getLogger(__name__)

# Types that are always searched before creating, even with lookups skipped
ALWAYS_SEARCH_TYPES = frozenset({EntityType.PARTICIPANT})


@dataclass
class ResolverStats:
    """Request and cache counters for one run"""

    cache_hits: int = 0
    searches: int = 0
    search_failures: int = 0
    creates: int = 0
    conflicts_recovered: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class EntityResolver:
    """Resolves natural keys to remote ids, creating entities when missing.

    Concurrent calls for the same (type, key) are serialized, so rows
    processed in parallel that share a participant create it only once.
    """

    def __init__(self, client: RecordClient, cache: CacheContext, skip_lookup: bool = False):
        self.client = client
        self.cache = cache
        self.skip_lookup = skip_lookup
        self._stats = ResolverStats()
        self._locks: dict[tuple[EntityType, str], asyncio.Lock] = {}

    def _should_search(self, entity_type: EntityType) -> bool:
        return not self.skip_lookup or entity_type in ALWAYS_SEARCH_TYPES

    async def resolve(
        self,
        entity_type: EntityType,
        filters: Mapping[str, Any],
        create_payload: Mapping[str, Any] | None,
        cache_key: str,
    ) -> int | None:
        """Return the id for cache_key, searching and creating as needed.

        Args:
            entity_type: Collection to resolve in
            filters: Equality filters identifying the entity remotely
            create_payload: Fields for creation, or None to only look up
            cache_key: Natural key of the entity

        Returns:
            The entity id, or None when not found and no payload was given

        Raises:
            ConflictError: creation conflicted and the re-search found nothing
            StrapiError: creation failed for any other reason
        """
        cache = self.cache.for_type(entity_type)
        cached = cache.get(cache_key)
        if cached is not None:
            self._stats.cache_hits += 1
            return cached

        lock_key = (entity_type, cache_key)
        lock = self._locks.setdefault(lock_key, asyncio.Lock())
        try:
            async with lock:
                # A concurrent caller may have resolved the key while we waited
                cached = cache.get(cache_key)
                if cached is not None:
                    self._stats.cache_hits += 1
                    return cached

                if self._should_search(entity_type):
                    found = await self._search(entity_type, filters)
                    if found is not None:
                        cache.set(cache_key, found)
                        return found

                if create_payload is None:
                    return None

                created = await self._create(entity_type, filters, create_payload)
                cache.set(cache_key, created)
                return created
        finally:
            # Cached keys are answered before the lock is reached
            if cache.has(cache_key):
                self._locks.pop(lock_key, None)

    async def _search(self, entity_type: EntityType, filters: Mapping[str, Any]) -> int | None:
        """Search by equality filters; a failed search counts as a miss."""
        self._stats.searches += 1
        try:
            record = await asyncio.to_thread(self.client.find_first, entity_type.endpoint, filters)
        except StrapiError as e:
            self._stats.search_failures += 1
            logger.warning(f"Search failed for {entity_type.endpoint}: {format_error(e)}")
            return None
        return int(record["id"]) if record is not None else None

    async def _create(
        self,
        entity_type: EntityType,
        filters: Mapping[str, Any],
        create_payload: Mapping[str, Any],
    ) -> int:
        self._stats.creates += 1
        try:
            record = await asyncio.to_thread(self.client.create, entity_type.endpoint, create_payload)
            return int(record["id"])
        except ConflictError as conflict:
            logger.warning(f"Race condition detected for {entity_type.endpoint}. Re-attempting search...")
            found = await self._search(entity_type, filters)
            if found is None:
                logger.error(f"Entity missing after conflict on {entity_type.endpoint}: {format_error(conflict)}")
                raise
            self._stats.conflicts_recovered += 1
            return found

    def stats(self) -> ResolverStats:
        return ResolverStats(**asdict(self._stats))

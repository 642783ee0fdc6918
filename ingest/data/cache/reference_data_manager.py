"""Adaptive reference-code (CCT) cache.

The reference table can hold hundreds of thousands of site codes. When a
local extract is available and small enough it is parsed once into a
code -> id map (pre-loaded mode) and lookups never touch the network.
Otherwise every distinct code is searched remotely once and the answer,
including "absent", is memoized (on-demand mode).

Reference codes are never created by the pipeline: a code missing from
the backend resolves to None."""

from __future__ import annotations

import asyncio
import csv
import logging
import os
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any, TextIO

from strapi.errors import StrapiError

from ...core.constants import (
    REFERENCE_BYTES_PER_RECORD,
    REFERENCE_CODE_COLUMN,
    REFERENCE_ID_COLUMN,
    REFERENCE_MAX_VALIDATION_ERRORS,
    REFERENCE_PROGRESS_INTERVAL,
)
from ...core.interfaces import RecordClient
from ...core.models import EntityType, ReferenceMode
from ...shared.text_utils import format_error, normalize_header

logger = logging.getLogger(__name__)

# Returns an open text stream over the extract, or None when unavailable
ExtractOpener = Callable[[], TextIO | None]


@dataclass
class ReferencePerformanceMetrics:
    """Load and lookup counters for the reference cache"""

    load_time_ms: float = 0.0
    record_count: int = 0
    estimated_memory_mb: float = 0.0
    cache_hits: int = 0
    api_calls_avoided: int = 0
    remote_lookups: int = 0

    @property
    def cache_hit_rate(self) -> float:
        total = self.cache_hits + self.remote_lookups
        return self.cache_hits / total if total > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["cache_hit_rate"] = self.cache_hit_rate
        return data


@dataclass
class ExtractValidation:
    """Result of scanning the reference extract"""

    is_valid: bool
    errors: list[str] = field(default_factory=list)
    record_count: int = 0
    estimated_memory_mb: float = 0.0


def estimate_memory_mb(record_count: int) -> float:
    """Estimated in-memory size of a code -> id map with record_count entries."""
    return record_count * REFERENCE_BYTES_PER_RECORD / 1024 / 1024


def _parse_id(value: Any) -> int | None:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _normalized_rows(stream: TextIO) -> csv.DictReader[str]:
    reader = csv.DictReader(stream)
    if reader.fieldnames:
        reader.fieldnames = [normalize_header(name) for name in reader.fieldnames]
    return reader


class ReferenceDataManager:
    """Pre-loaded or on-demand cache of reference code -> id.

    Mode selection (initialize):
        1. No extract available -> on-demand
        2. Extract fails validation -> on-demand (warning, never raises)
        3. 'auto': estimated size above max_memory_mb, or more than
           max_records records -> on-demand
        4. Otherwise the extract is parsed and the manager is pre-loaded

    mode_override 'on_demand' skips the extract entirely; 'preload' ignores
    the size heuristics but still requires a valid extract.
    """

    def __init__(
        self,
        client: RecordClient,
        *,
        environment: str = "local",
        max_memory_mb: float = 1024,
        max_records: int = 100_000,
        mode_override: str = "auto",
        local_path: str | None = None,
        opener: ExtractOpener | None = None,
    ):
        self.client = client
        self.environment = environment
        self.max_memory_mb = max_memory_mb
        self.max_records = max_records
        self.mode_override = mode_override
        self.local_path = local_path
        self._opener = opener

        self.mode = ReferenceMode.UNINITIALIZED
        self._codes: dict[str, int] = {}
        self._absent: set[str] = set()
        self._metrics = ReferencePerformanceMetrics()

        self._init_lock = asyncio.Lock()
        self._code_locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self.mode is not ReferenceMode.UNINITIALIZED

    async def initialize(self) -> None:
        """Choose the lookup mode and preload the extract when it fits.

        Idempotent: only the first call does any work.
        """
        async with self._init_lock:
            if self.is_initialized:
                return

            logger.info("Initializing reference data manager...")
            start_time = time.perf_counter()
            self.mode = await asyncio.to_thread(self._select_mode_and_load)
            self._metrics.load_time_ms = (time.perf_counter() - start_time) * 1000

            logger.info(
                f"Reference data ready in {self._metrics.load_time_ms:.0f}ms: "
                f"mode={self.mode.value}, records={self._metrics.record_count}"
            )

    def _select_mode_and_load(self) -> ReferenceMode:
        """Pick the lookup mode; any failure while reading the extract means on-demand."""
        try:
            return self._choose_mode()
        except Exception as e:
            logger.warning(f"Reference data initialization failed, using on-demand mode: {format_error(e)}")
            self._codes.clear()
            return ReferenceMode.ON_DEMAND

    def _choose_mode(self) -> ReferenceMode:
        if self.mode_override == "on_demand":
            logger.info("Reference mode forced to on-demand")
            return ReferenceMode.ON_DEMAND

        if not self._is_extract_available():
            logger.info("No reference extract available, using on-demand mode")
            return ReferenceMode.ON_DEMAND

        try:
            validation = self._validate_extract()
        except (OSError, csv.Error, UnicodeDecodeError) as e:
            logger.warning(f"Reference extract could not be read, using on-demand mode: {format_error(e)}")
            return ReferenceMode.ON_DEMAND

        self._metrics.record_count = validation.record_count
        self._metrics.estimated_memory_mb = validation.estimated_memory_mb

        if not validation.is_valid:
            logger.warning(f"Reference extract failed validation, using on-demand mode: {validation.errors}")
            return ReferenceMode.ON_DEMAND

        if self.mode_override != "preload" and not self._fits_in_memory(validation):
            return ReferenceMode.ON_DEMAND

        try:
            self._load_extract()
        except (OSError, csv.Error, UnicodeDecodeError) as e:
            logger.warning(f"Reference preload failed, using on-demand mode: {format_error(e)}")
            self._codes.clear()
            return ReferenceMode.ON_DEMAND

        return ReferenceMode.PRELOADED

    def _fits_in_memory(self, validation: ExtractValidation) -> bool:
        if validation.record_count == 0:
            logger.info("Reference extract is empty, using on-demand mode")
            return False
        if validation.estimated_memory_mb > self.max_memory_mb:
            logger.info(
                f"Preloading disabled: estimated memory ({validation.estimated_memory_mb:.2f}MB) "
                f"exceeds limit ({self.max_memory_mb}MB)"
            )
            return False
        if validation.record_count > self.max_records:
            logger.info(
                f"Preloading disabled: record count ({validation.record_count}) exceeds limit ({self.max_records})"
            )
            return False
        return True

    def _open_extract(self) -> TextIO | None:
        if self._opener is not None:
            return self._opener()
        if self.local_path and os.path.isfile(self.local_path):
            return open(self.local_path, encoding="utf-8-sig", newline="")
        return None

    def _is_extract_available(self) -> bool:
        if self._opener is None:
            if not self.local_path:
                return False
            if not os.path.isfile(self.local_path):
                logger.info(f"Reference extract not found: {self.local_path}")
                return False
            logger.info(f"Found reference extract: {self.local_path}")
            return True

        try:
            stream = self._opener()
        except OSError as e:
            logger.info(f"Reference extract not accessible: {format_error(e)}")
            return False
        if stream is None:
            return False
        stream.close()
        return True

    def _validate_extract(self) -> ExtractValidation:
        """Scan the extract once, counting records and collecting format errors."""
        logger.debug("Validating reference extract...")
        stream = self._open_extract()
        if stream is None:
            return ExtractValidation(is_valid=False, errors=["No reference data stream available"])

        errors: list[str] = []
        record_count = 0

        with stream:
            reader = _normalized_rows(stream)
            headers = reader.fieldnames or []
            if REFERENCE_ID_COLUMN not in headers or REFERENCE_CODE_COLUMN not in headers:
                return ExtractValidation(
                    is_valid=False,
                    errors=[f"Missing required columns: '{REFERENCE_ID_COLUMN}' and '{REFERENCE_CODE_COLUMN}'"],
                )

            for row in reader:
                record_count += 1
                raw_id = (row.get(REFERENCE_ID_COLUMN) or "").strip()
                code = (row.get(REFERENCE_CODE_COLUMN) or "").strip()

                if len(errors) < REFERENCE_MAX_VALIDATION_ERRORS:
                    if not raw_id or not code:
                        errors.append(f"Record {record_count}: Missing {REFERENCE_ID_COLUMN} or {REFERENCE_CODE_COLUMN}")
                    elif _parse_id(raw_id) is None:
                        errors.append(f"Record {record_count}: Invalid id format")

                if record_count % REFERENCE_PROGRESS_INTERVAL == 0:
                    logger.info(f"Validation progress: {record_count} records")

        estimated = estimate_memory_mb(record_count)
        logger.info(f"Reference extract validated: {record_count} records, ~{estimated:.2f}MB")
        return ExtractValidation(
            is_valid=not errors,
            errors=errors,
            record_count=record_count,
            estimated_memory_mb=estimated,
        )

    def _load_extract(self) -> None:
        logger.info("Pre-loading reference extract into memory...")
        stream = self._open_extract()
        if stream is None:
            raise OSError("Reference extract disappeared before pre-loading")

        loaded = 0
        with stream:
            for row in _normalized_rows(stream):
                code = (row.get(REFERENCE_CODE_COLUMN) or "").strip()
                entity_id = _parse_id(row.get(REFERENCE_ID_COLUMN))
                if code and entity_id is not None:
                    self._codes[code] = entity_id
                    loaded += 1
                    if loaded % REFERENCE_PROGRESS_INTERVAL == 0:
                        logger.info(f"Pre-loading progress: {loaded} records")

        self._metrics.record_count = loaded
        logger.info(f"Pre-loaded {loaded} reference codes")

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get_or_create_reference(self, code: str) -> int | None:
        """Resolve a reference code to its id, or None when it does not exist.

        Initializes lazily. Pre-loaded mode answers from memory only. On-demand
        mode searches each code at most once per run; absent codes are
        remembered, failed searches are not.
        """
        if not self.is_initialized:
            await self.initialize()

        hit, entity_id = self._lookup_memo(code)
        if hit:
            return entity_id

        if self.mode is ReferenceMode.PRELOADED:
            self._metrics.api_calls_avoided += 1
            return None

        lock = self._code_locks.setdefault(code, asyncio.Lock())
        try:
            async with lock:
                # Another row may have resolved this code while we waited
                hit, entity_id = self._lookup_memo(code)
                if hit:
                    return entity_id
                return await self._fetch_and_memoize(code)
        finally:
            # Memoized codes are answered before the lock is reached
            if code in self._codes or code in self._absent:
                self._code_locks.pop(code, None)

    def _lookup_memo(self, code: str) -> tuple[bool, int | None]:
        if code in self._codes:
            self._metrics.cache_hits += 1
            self._metrics.api_calls_avoided += 1
            return True, self._codes[code]
        if code in self._absent:
            self._metrics.cache_hits += 1
            self._metrics.api_calls_avoided += 1
            return True, None
        return False, None

    async def _fetch_and_memoize(self, code: str) -> int | None:
        self._metrics.remote_lookups += 1
        try:
            record = await asyncio.to_thread(
                self.client.find_first, EntityType.REFERENCE_CODE.endpoint, {REFERENCE_CODE_COLUMN: code}
            )
        except StrapiError as e:
            logger.warning(f"Failed to look up reference code {code}: {format_error(e)}")
            return None

        if record is None:
            self._absent.add(code)
            logger.debug(f"Reference code {code} not found")
            return None

        entity_id = int(record["id"])
        self._codes[code] = entity_id
        return entity_id

    # ------------------------------------------------------------------
    # State and introspection
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Drop every cached code and return to the uninitialized state."""
        self._codes.clear()
        self._absent.clear()
        self._code_locks.clear()
        self._metrics = ReferencePerformanceMetrics()
        self.mode = ReferenceMode.UNINITIALIZED

    def is_using_on_demand_mode(self) -> bool:
        return self.mode is ReferenceMode.ON_DEMAND

    def get_performance_metrics(self) -> ReferencePerformanceMetrics:
        """Copy of the current metrics"""
        return ReferencePerformanceMetrics(**asdict(self._metrics))

    def get_cache_stats(self) -> dict[str, Any]:
        return {
            "size": len(self._codes),
            "absent": len(self._absent),
            "mode": self.mode.value,
            "is_initialized": self.is_initialized,
        }

    def get_config_summary(self) -> dict[str, Any]:
        return {
            "environment": self.environment,
            "mode_override": self.mode_override,
            "max_memory_mb": self.max_memory_mb,
            "max_records": self.max_records,
            "has_local_path": bool(self.local_path),
            "has_opener": self._opener is not None,
            "current_mode": self.mode.value,
            "is_initialized": self.is_initialized,
        }


def create_reference_data_manager(
    client: RecordClient,
    settings: Any,
    opener: ExtractOpener | None = None,
) -> ReferenceDataManager:
    """Build a ReferenceDataManager from ingest Settings."""
    manager = ReferenceDataManager(
        client,
        environment=settings.environment,
        max_memory_mb=settings.effective_reference_max_memory_mb(),
        max_records=settings.reference_max_records,
        mode_override=settings.reference_data_mode,
        local_path=settings.reference_data_path,
        opener=opener,
    )
    logger.info(f"Reference data manager configured: {manager.get_config_summary()}")
    return manager

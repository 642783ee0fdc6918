"""Precreation stage: create parent entities in dependency order.

Order:
    1. Reference data initialization and survey preload (concurrently)
    2. Programs
    3. Implementations (need their program and every survey id)
    4. Modules, attendance slots and jobs of each implementation

Programs and implementations are created sequentially so two rows can
never race to create the same parent. A unit that fails to resolve is
logged and skipped; rows depending on it fail later with a clear error."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from typing import Any

from strapi.errors import StrapiError

from ..core.constants import (
    IMPLEMENTATION_PROGRESS_INTERVAL,
    MODULE_NAMES,
    PROGRAM_PROGRESS_INTERVAL,
)
from ..core.errors import IngestError
from ..core.interfaces import RecordClient
from ..core.models import CacheValidation, EntityType, ImplementationInfo, UniqueSets
from ..data.cache.keyed_cache import CacheContext
from ..data.cache.reference_data_manager import ReferenceDataManager
from ..resolution.entity_resolver import EntityResolver
from ..shared.text_utils import create_cache_key, format_error

logger = logging.getLogger(__name__)

SURVEY_KEY_FIELD = "clave"


class PrecreationStage:
    """Creates programs, implementations and implementation-scoped entities"""

    def __init__(
        self,
        client: RecordClient,
        cache: CacheContext,
        resolver: EntityResolver,
        reference_manager: ReferenceDataManager,
    ):
        self.client = client
        self.cache = cache
        self.resolver = resolver
        self.reference_manager = reference_manager
        self.failed_units: list[str] = []

    async def run(self, unique_sets: UniqueSets) -> CacheValidation:
        """Create every parent entity the rows depend on.

        Raises:
            StrapiError: the survey preload failed
        """
        logger.info("Pre-loading and creating parent entities...")
        start_time = time.perf_counter()

        await self._load_independent_entities()
        await self._create_programs(unique_sets.programs)
        await self._create_implementations(unique_sets.implementations)
        await self._create_implementation_dependents(unique_sets)

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.info(f"Precreation finished in {elapsed_ms:.0f}ms")
        self.cache.log_stats("precreation")

        validation = self.validate_cache_completeness(unique_sets)
        if validation.is_valid:
            logger.info("Cache validation passed")
        else:
            for issue in validation.issues:
                logger.warning(f"Cache validation issue: {issue}")
        return validation

    async def _load_independent_entities(self) -> None:
        surveys = self.cache.for_type(EntityType.SURVEY)
        await asyncio.gather(
            self.reference_manager.initialize(),
            surveys.bulk_preload(self.client, SURVEY_KEY_FIELD),
        )
        logger.info(f"Surveys loaded: {len(surveys)}; reference mode: {self.reference_manager.mode.value}")

    async def _resolve_unit(
        self,
        label: str,
        entity_type: EntityType,
        filters: Mapping[str, Any],
        payload: Mapping[str, Any],
        cache_key: str,
    ) -> int | None:
        """Resolve one entity, logging and recording a failure instead of raising."""
        try:
            return await self.resolver.resolve(entity_type, filters, payload, cache_key)
        except (StrapiError, IngestError) as e:
            logger.error(f"Failed to create {label}: {format_error(e)}")
            self.failed_units.append(label)
            return None

    async def _create_programs(self, programs: set[str]) -> None:
        total = len(programs)
        logger.info(f"Creating {total} programs sequentially...")

        for count, name in enumerate(sorted(programs), start=1):
            await self._resolve_unit(
                f'program "{name}"',
                EntityType.PROGRAM,
                {"nombre": name},
                {"nombre": name},
                name,
            )
            if count % PROGRAM_PROGRESS_INTERVAL == 0 or count == total:
                logger.info(f"Programs progress: {count}/{total}")

        logger.info(f"Programs in cache: {len(self.cache.for_type(EntityType.PROGRAM))}")

    async def _create_implementations(self, implementations: dict[str, ImplementationInfo]) -> None:
        total = len(implementations)
        logger.info(f"Creating {total} implementations sequentially...")

        programs = self.cache.for_type(EntityType.PROGRAM)
        survey_ids = self.cache.for_type(EntityType.SURVEY).values()

        for count, (impl_key, info) in enumerate(implementations.items(), start=1):
            if not info.program:
                logger.warning(f"Implementation {impl_key} has no program, skipping")
                continue

            program_id = programs.get(info.program)
            if program_id is None:
                logger.warning(f"Program not found in cache for implementation {impl_key}: {info.program}")
                continue

            filters = {"nombre": info.name, "ciclo_escolar": info.school_cycle, "periodo": info.period}
            await self._resolve_unit(
                f'implementation "{impl_key}"',
                EntityType.IMPLEMENTATION,
                filters,
                {**filters, "programa": program_id, "encuestas": survey_ids},
                impl_key,
            )

            if count % IMPLEMENTATION_PROGRESS_INTERVAL == 0 or count == total:
                logger.info(f"Implementations progress: {count}/{total}")

        logger.info(f"Implementations in cache: {len(self.cache.for_type(EntityType.IMPLEMENTATION))}")

    async def _create_implementation_dependents(self, unique_sets: UniqueSets) -> None:
        logger.info("Creating implementation-dependent entities...")
        implementations = self.cache.for_type(EntityType.IMPLEMENTATION).items()

        for impl_key, impl_id in implementations:
            for module_name in MODULE_NAMES:
                await self._resolve_unit(
                    f"module {module_name} of {impl_key}",
                    EntityType.MODULE,
                    {"nombre": module_name, "implementacion": impl_id},
                    {"nombre": module_name, "implementacion": impl_id},
                    create_cache_key([module_name, str(impl_id)]),
                )

            for field_name in sorted(unique_sets.attendance_fields):
                modality = unique_sets.attendance_modalities.get(create_cache_key([impl_key, field_name]))
                await self._resolve_unit(
                    f"attendance slot {field_name} of {impl_key}",
                    EntityType.ATTENDANCE_SLOT,
                    {"clave_sesion": field_name, "implementacion": impl_id},
                    {"clave_sesion": field_name, "modalidad": modality, "implementacion": impl_id},
                    create_cache_key([field_name, str(impl_id)]),
                )

            for field_name in sorted(unique_sets.job_fields):
                await self._resolve_unit(
                    f"job {field_name} of {impl_key}",
                    EntityType.JOB,
                    {"nombre": field_name, "implementacion": impl_id},
                    {"nombre": field_name, "implementacion": impl_id},
                    create_cache_key([field_name, str(impl_id)]),
                )

        logger.info(
            f"Modules: {len(self.cache.for_type(EntityType.MODULE))}, "
            f"attendance slots: {len(self.cache.for_type(EntityType.ATTENDANCE_SLOT))}, "
            f"jobs: {len(self.cache.for_type(EntityType.JOB))}"
        )

    def validate_cache_completeness(self, unique_sets: UniqueSets) -> CacheValidation:
        """List implementations whose modules, attendance slots or jobs are not all cached."""
        issues = list(self.cache.validate().issues)

        implementations = self.cache.for_type(EntityType.IMPLEMENTATION)
        modules = self.cache.for_type(EntityType.MODULE)
        slots = self.cache.for_type(EntityType.ATTENDANCE_SLOT)
        jobs = self.cache.for_type(EntityType.JOB)

        for impl_key in unique_sets.implementations:
            impl_id = implementations.get(impl_key)
            if impl_id is None:
                issues.append(f"Implementation {impl_key} was not created")
                continue

            suffix = str(impl_id)
            missing_modules = [m for m in MODULE_NAMES if not modules.has(create_cache_key([m, suffix]))]
            missing_slots = [f for f in unique_sets.attendance_fields if not slots.has(create_cache_key([f, suffix]))]
            missing_jobs = [f for f in unique_sets.job_fields if not jobs.has(create_cache_key([f, suffix]))]

            if missing_modules:
                issues.append(f"Implementation {impl_key} is missing modules: {', '.join(missing_modules)}")
            if missing_slots:
                issues.append(f"Implementation {impl_key} is missing {len(missing_slots)} attendance slot(s)")
            if missing_jobs:
                issues.append(f"Implementation {impl_key} is missing {len(missing_jobs)} job(s)")

        return CacheValidation(is_valid=not issues, issues=issues)

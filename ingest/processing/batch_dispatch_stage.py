"""Batch dispatch stage: one participation (plus dependent records) per row.

Rows are processed in slices of batch_size, either all rows of a slice
concurrently or one at a time. A failing row is recorded in the error
collector and never affects the other rows of its batch."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from typing import Any

from ..core.constants import (
    APP_USAGE_ENDPOINT,
    ATTENDANCE_RECORD_ENDPOINT,
    COL_EMAIL,
    COL_EXTERNAL_ID,
    COL_REFERENCE_CODE,
    EMAIL_ENDPOINT,
    JOB_COMPLETION_ENDPOINT,
    MODULE_NAMES,
    MODULE_PROGRESS_ENDPOINT,
    PARTICIPATIONS_ENDPOINT,
    SURVEY_COLUMNS,
    SURVEY_COMPLETED_STATE,
    SURVEY_COMPLETION_ENDPOINT,
    UNKNOWN_PARTICIPANT_ID,
)
from ..core.errors import MissingIdentifiersError
from ..core.interfaces import ErrorCollector, RecordClient
from ..core.models import BatchRunSummary, CsvRow, EntityType, ProcessMode, RowOutcome, SubRecordResult
from ..data.cache.keyed_cache import CacheContext
from ..data.cache.reference_data_manager import ReferenceDataManager
from ..resolution.entity_resolver import EntityResolver
from ..shared.text_utils import (
    create_cache_key,
    format_error,
    is_not_available,
    safe_trim,
    to_boolean,
    to_number,
    value_or_none,
)
from .analysis_stage import implementation_key, is_attendance_field, is_job_field
from .best_effort import BestEffortGroup

logger = logging.getLogger(__name__)


def participant_payload(row: CsvRow, external_id: str, reference_id: int | None) -> dict[str, Any]:
    """Participant fields converted from a source row."""
    return {
        "id_externo": external_id,
        "edad": to_number(row.get("edad")),
        "sexo": row.get("sexo"),
        "telefono": row.get("telefono"),
        "curp": row.get("curp"),
        "rfc": row.get("rfc"),
        "nombre": row.get("nombre"),
        "primer_apellido": row.get("primer_apellido"),
        "segundo_apellido": row.get("segundo_apellido"),
        "nombre_completo": row.get("nombre_completo"),
        "entidad": row.get("entidad"),
        "estado_civil": value_or_none(row.get("estado_civil")),
        "lengua_indigena": to_boolean(row.get("lengua_indigena")),
        "hablante_maya": to_boolean(row.get("hablante_maya")),
        "nivel_educativo": value_or_none(row.get("nivel_educativo")),
        "cct": reference_id,
    }


def participation_payload(row: CsvRow, participant_id: int, implementation_id: int) -> dict[str, Any]:
    """Participation fields converted from a source row."""
    return {
        "participante": participant_id,
        "implementacion": implementation_id,
        "puesto": row.get("puesto"),
        "puesto_detalle": row.get("puesto_detalle"),
        "antiguedad": row.get("antiguedad"),
        "estudiantes_a_cargo": to_number(row.get("estudiantes_a_cargo")),
        "turno": row.get("turno"),
        "participa_director": to_boolean(row.get("participa_director_a")),
        "cct_verificado": to_boolean(row.get("centro_de_trabajo_verificado")),
        "obtuvo_constancia": to_boolean(row.get("constancia")),
        "involucramiento": row.get("involucramiento"),
        "promedio_modulos": row.get("promedio_modulos"),
    }


class BatchDispatchStage:
    """Processes source rows into participations and their dependent records"""

    def __init__(
        self,
        client: RecordClient,
        cache: CacheContext,
        resolver: EntityResolver,
        reference_manager: ReferenceDataManager,
        error_collector: ErrorCollector,
        *,
        batch_size: int = 100,
        chunk_size: int = 150,
        process_mode: ProcessMode | str = ProcessMode.PARALLEL,
        skip_lookup: bool = False,
    ):
        self.client = client
        self.cache = cache
        self.resolver = resolver
        self.reference_manager = reference_manager
        self.error_collector = error_collector
        self.batch_size = batch_size
        self.chunk_size = chunk_size
        self.process_mode = ProcessMode(process_mode)
        self.skip_lookup = skip_lookup

    async def run(self, records: list[CsvRow]) -> BatchRunSummary:
        """Process every record and return the aggregated outcomes."""
        total = len(records)
        total_batches = (total + self.batch_size - 1) // self.batch_size
        logger.info(
            f"Processing {total} participants in batches of {self.batch_size} "
            f"(mode: {self.process_mode.value.upper()})"
        )

        summary = BatchRunSummary(total_records=total)
        start_time = time.perf_counter()

        for batch_start in range(0, total, self.batch_size):
            batch = records[batch_start : batch_start + self.batch_size]
            batch_number = batch_start // self.batch_size + 1
            logger.info(f"[BATCH {batch_number}/{total_batches}] Processing {len(batch)} records...")

            if self.process_mode is ProcessMode.SEQUENTIAL:
                outcomes = await self._process_sequential_batch(batch, batch_start)
            else:
                outcomes = await self._process_parallel_batch(batch, batch_start)

            for outcome in outcomes:
                summary.record(outcome)

            processed = min(batch_start + self.batch_size, total)
            logger.info(f"Progress: {processed}/{total} ({round(processed / total * 100)}%)")

        summary.elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            f"Batch processing finished in {summary.elapsed_ms:.0f}ms: "
            f"{summary.success_count} succeeded, {summary.error_count} failed"
        )
        return summary

    async def _process_sequential_batch(self, batch: list[CsvRow], batch_start: int) -> list[RowOutcome]:
        outcomes = []
        for offset, row in enumerate(batch):
            row_number = batch_start + offset + 1
            try:
                sub_results = await self.process_row(row)
            except Exception as e:
                outcomes.append(self._handle_row_error(row, e, row_number))
            else:
                outcomes.append(self._success(row, row_number, sub_results))
        return outcomes

    async def _process_parallel_batch(self, batch: list[CsvRow], batch_start: int) -> list[RowOutcome]:
        results = await asyncio.gather(*(self.process_row(row) for row in batch), return_exceptions=True)

        outcomes = []
        for offset, (row, result) in enumerate(zip(batch, results, strict=True)):
            row_number = batch_start + offset + 1
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                outcomes.append(self._handle_row_error(row, result, row_number))
            else:
                outcomes.append(self._success(row, row_number, result))
        return outcomes

    def _success(self, row: CsvRow, row_number: int, sub_results: list[SubRecordResult]) -> RowOutcome:
        failures = sum(1 for result in sub_results if not result.ok)
        if failures:
            logger.debug(f"Row {row_number}: {failures} non-critical record(s) failed")
        return RowOutcome(
            row_number=row_number,
            success=True,
            participant_id=self._participant_id_for(row),
            sub_record_failures=failures,
        )

    def _participant_id_for(self, row: CsvRow) -> int | None:
        external_id = safe_trim(row.get(COL_EXTERNAL_ID))
        if external_id is None:
            return None
        return self.cache.for_type(EntityType.PARTICIPANT).get(external_id)

    def _handle_row_error(self, row: CsvRow, error: Exception, row_number: int) -> RowOutcome:
        participant_label = safe_trim(row.get(COL_EXTERNAL_ID)) or UNKNOWN_PARTICIPANT_ID
        email = safe_trim(row.get(COL_EMAIL)) or ""
        message = format_error(error)

        logger.error(f"Row {row_number} (ID={participant_label}) failed: {message}")
        self.error_collector.log_error(participant_label, email, message, row_number)

        return RowOutcome(row_number=row_number, success=False, error=message)

    # ------------------------------------------------------------------
    # Row processing
    # ------------------------------------------------------------------

    async def process_row(self, row: CsvRow) -> list[SubRecordResult]:
        """Write the participation of one row.

        Returns:
            Results of the non-critical dependent writes

        Raises:
            MissingIdentifiersError: participant or implementation unresolved
            StrapiError: a critical write (participant, participation, email) failed
        """
        implementation_id = self.cache.for_type(EntityType.IMPLEMENTATION).get(implementation_key(row))

        reference_code = safe_trim(row.get(COL_REFERENCE_CODE))
        reference_id = await self.reference_manager.get_or_create_reference(reference_code) if reference_code else None

        external_id = safe_trim(row.get(COL_EXTERNAL_ID))
        participant_id = None
        if external_id is not None:
            participant_id = await self.resolver.resolve(
                EntityType.PARTICIPANT,
                {"id_externo": external_id},
                participant_payload(row, external_id, reference_id),
                external_id,
            )

        if participant_id is None or implementation_id is None:
            raise MissingIdentifiersError(external_id, participant_id, implementation_id)

        sub_results = await self._create_participation(row, participant_id, implementation_id)
        await self._handle_participant_email(row, participant_id)
        return sub_results

    async def _find(self, endpoint: str, filters: Mapping[str, Any]) -> dict[str, Any] | None:
        return await asyncio.to_thread(self.client.find_first, endpoint, filters)

    async def _create(self, endpoint: str, data: Mapping[str, Any]) -> dict[str, Any]:
        return await asyncio.to_thread(self.client.create, endpoint, data)

    async def _create_participation(
        self, row: CsvRow, participant_id: int, implementation_id: int
    ) -> list[SubRecordResult]:
        if not self.skip_lookup:
            existing = await self._find(
                PARTICIPATIONS_ENDPOINT,
                {"participante.id": participant_id, "implementacion.id": implementation_id},
            )
            if existing is not None:
                logger.debug(
                    f"Participation already exists for participant {participant_id} "
                    f"and implementation {implementation_id}, skipping"
                )
                return []

        participation = await self._create(
            PARTICIPATIONS_ENDPOINT, participation_payload(row, participant_id, implementation_id)
        )
        participation_id = int(participation["id"])

        group = BestEffortGroup(self.chunk_size)
        self._queue_app_usage(group, row, participant_id)
        self._queue_module_progress(group, row, participation_id, implementation_id)
        self._queue_survey_completions(group, row, participation_id)
        self._queue_attendance_marks(group, row, participation_id, implementation_id)
        self._queue_job_completions(group, row, participation_id, implementation_id)
        return await group.run()

    def _queue(self, group: BestEffortGroup, endpoint: str, data: dict[str, Any]) -> None:
        group.add(endpoint, lambda: self._create(endpoint, data))

    def _queue_app_usage(self, group: BestEffortGroup, row: CsvRow, participant_id: int) -> None:
        minutes = row.get("minutos_app")
        downloaded = to_boolean(row.get("descarga_app"))
        if is_not_available(minutes) and not downloaded:
            return
        self._queue(
            group,
            APP_USAGE_ENDPOINT,
            {
                "participante": participant_id,
                "minutos_uso_app": to_number(minutes) or 0,
                "descargo_app": downloaded,
            },
        )

    def _queue_module_progress(
        self, group: BestEffortGroup, row: CsvRow, participation_id: int, implementation_id: int
    ) -> None:
        modules = self.cache.for_type(EntityType.MODULE)
        for module_name in MODULE_NAMES:
            value = row.get(module_name)
            if is_not_available(value):
                continue
            module_id = modules.get(create_cache_key([module_name, str(implementation_id)]))
            if module_id is None:
                continue
            self._queue(
                group,
                MODULE_PROGRESS_ENDPOINT,
                {"participacion": participation_id, "modulo": module_id, "calificacion": to_number(value)},
            )

    def _queue_survey_completions(self, group: BestEffortGroup, row: CsvRow, participation_id: int) -> None:
        surveys = self.cache.for_type(EntityType.SURVEY)
        for survey_key in SURVEY_COLUMNS:
            if is_not_available(row.get(survey_key)):
                continue
            survey_id = surveys.get(survey_key)
            if survey_id is None:
                continue
            self._queue(
                group,
                SURVEY_COMPLETION_ENDPOINT,
                {"participacion": participation_id, "encuesta": survey_id, "estado": SURVEY_COMPLETED_STATE},
            )

    def _queue_attendance_marks(
        self, group: BestEffortGroup, row: CsvRow, participation_id: int, implementation_id: int
    ) -> None:
        slots = self.cache.for_type(EntityType.ATTENDANCE_SLOT)
        for field_name, value in row.items():
            if not is_attendance_field(field_name) or is_not_available(value):
                continue
            slot_id = slots.get(create_cache_key([field_name, str(implementation_id)]))
            if slot_id is None:
                continue
            self._queue(
                group,
                ATTENDANCE_RECORD_ENDPOINT,
                {"participacion": participation_id, "asistencia": slot_id, "presente": True},
            )

    def _queue_job_completions(
        self, group: BestEffortGroup, row: CsvRow, participation_id: int, implementation_id: int
    ) -> None:
        jobs = self.cache.for_type(EntityType.JOB)
        for field_name, value in row.items():
            if not is_job_field(field_name) or is_not_available(value):
                continue
            job_id = jobs.get(create_cache_key([field_name, str(implementation_id)]))
            if job_id is None:
                continue
            self._queue(
                group,
                JOB_COMPLETION_ENDPOINT,
                {"participacion": participation_id, "trabajo": job_id, "completado": True},
            )

    async def _handle_participant_email(self, row: CsvRow, participant_id: int) -> None:
        email = safe_trim(row.get(COL_EMAIL))
        if email is None or is_not_available(email):
            return

        if self.skip_lookup:
            await self._create(EMAIL_ENDPOINT, {"participante": participant_id, "correo": email, "principal": True})
            return

        any_email = await self._find(EMAIL_ENDPOINT, {"participante.id": participant_id})
        is_principal = any_email is None

        same_email = await self._find(EMAIL_ENDPOINT, {"participante.id": participant_id, "correo": email})
        if same_email is not None:
            logger.debug(f"Email already registered for participant {participant_id}")
            return

        await self._create(EMAIL_ENDPOINT, {"participante": participant_id, "correo": email, "principal": is_principal})
        logger.debug(f"Email assigned to participant {participant_id} (principal={is_principal})")

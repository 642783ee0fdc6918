"""Analysis stage: one pass over the source rows collecting distinct entities.

Makes no remote calls. The UniqueSets it returns drive precreation, so
every parent entity a row needs is known before any row is dispatched."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable

from ..core.constants import (
    ANALYSIS_PROGRESS_INTERVAL,
    ATTENDANCE_FIELD_PREFIXES,
    COL_IMPLEMENTATION,
    COL_PERIOD,
    COL_PROGRAM,
    COL_REFERENCE_CODE,
    COL_SCHOOL_CYCLE,
    JOB_FIELD_PREFIXES,
    MODALITY_COLUMN_PREFIX,
)
from ..core.models import AnalysisResult, CsvRow, ImplementationInfo, UniqueSets
from ..shared.text_utils import create_cache_key, is_not_available, safe_trim

logger = logging.getLogger(__name__)


def implementation_key(row: CsvRow) -> str:
    """Natural key of the implementation a row belongs to."""
    return create_cache_key(
        [
            safe_trim(row.get(COL_IMPLEMENTATION)) or "",
            safe_trim(row.get(COL_SCHOOL_CYCLE)) or "",
            safe_trim(row.get(COL_PERIOD)) or "",
        ]
    )


def is_attendance_field(name: str) -> bool:
    return name.startswith(ATTENDANCE_FIELD_PREFIXES)


def is_job_field(name: str) -> bool:
    return name.startswith(JOB_FIELD_PREFIXES)


class AnalysisStage:
    """Collects reference codes, programs, implementations, attendance and job fields"""

    def analyze(self, rows: Iterable[CsvRow]) -> AnalysisResult:
        """Analyze all rows.

        Args:
            rows: Source rows with normalized headers

        Returns:
            AnalysisResult with the materialized rows and their UniqueSets
        """
        logger.info("Analyzing source rows for unique entities...")
        start_time = time.perf_counter()

        records: list[CsvRow] = []
        unique_sets = UniqueSets()

        for row in rows:
            records.append(row)
            self._collect_row(row, unique_sets)

            if len(records) % ANALYSIS_PROGRESS_INTERVAL == 0:
                logger.info(f"Analysis progress: {len(records)} rows processed")

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            f"{len(records)} rows analyzed in {elapsed_ms:.0f}ms. "
            f"Found {len(unique_sets.programs)} programs, "
            f"{len(unique_sets.implementations)} implementations, "
            f"{len(unique_sets.reference_codes)} reference codes"
        )

        return AnalysisResult(
            records=records,
            unique_sets=unique_sets,
            rows_analyzed=len(records),
            elapsed_ms=elapsed_ms,
        )

    def _collect_row(self, row: CsvRow, unique_sets: UniqueSets) -> None:
        reference_code = safe_trim(row.get(COL_REFERENCE_CODE))
        if reference_code:
            unique_sets.reference_codes.add(reference_code)

        program = safe_trim(row.get(COL_PROGRAM))
        if program:
            unique_sets.programs.add(program)

        name = safe_trim(row.get(COL_IMPLEMENTATION))
        school_cycle = safe_trim(row.get(COL_SCHOOL_CYCLE))
        period = safe_trim(row.get(COL_PERIOD))
        if name and school_cycle and period:
            key = create_cache_key([name, school_cycle, period])
            # First sighting wins
            if key not in unique_sets.implementations:
                unique_sets.implementations[key] = ImplementationInfo(
                    name=name,
                    school_cycle=school_cycle,
                    period=period,
                    program=program,
                )

        self._collect_attendance_fields(row, unique_sets)

        for field_name in row:
            if is_job_field(field_name):
                unique_sets.job_fields.add(field_name)

    def _collect_attendance_fields(self, row: CsvRow, unique_sets: UniqueSets) -> None:
        impl_key = implementation_key(row)

        for field_name in row:
            if not is_attendance_field(field_name):
                continue
            unique_sets.attendance_fields.add(field_name)

            modality = row.get(f"{MODALITY_COLUMN_PREFIX}{field_name}")
            if not isinstance(modality, str) or is_not_available(modality):
                continue
            modality = modality.strip()

            map_key = create_cache_key([impl_key, field_name])
            existing = unique_sets.attendance_modalities.get(map_key)
            if existing is None:
                unique_sets.attendance_modalities[map_key] = modality
            elif existing != modality:
                logger.warning(
                    f"Conflicting modality for {field_name} in implementation {impl_key}: "
                    f'"{existing}" vs "{modality}"; keeping "{existing}"'
                )

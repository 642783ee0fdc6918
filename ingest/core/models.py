"""Core domain models for participation ingest.

These models represent the values passed between pipeline stages and are
independent of the HTTP layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# A source row after header normalization
CsvRow = dict[str, Any]


class EntityType(Enum):
    """Entity types resolved and cached during a run.

    Values are the Strapi collection names.
    """

    PROGRAM = "programas"
    REFERENCE_CODE = "ccts"
    PARTICIPANT = "participantes"
    IMPLEMENTATION = "implementaciones"
    MODULE = "modulos"
    SURVEY = "encuestas"
    ATTENDANCE_SLOT = "asistencias"
    JOB = "trabajos"

    @property
    def endpoint(self) -> str:
        """Collection path segment on the Strapi API."""
        return self.value


class ProcessMode(Enum):
    """How rows inside a batch are dispatched"""

    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


class ReferenceMode(Enum):
    """Strategy used by the reference-data manager"""

    UNINITIALIZED = "uninitialized"
    PRELOADED = "pre-loaded"
    ON_DEMAND = "on-demand"


@dataclass(frozen=True)
class ImplementationInfo:
    """Descriptive fields of an implementation, taken from its first row"""

    name: str
    school_cycle: str
    period: str
    program: str | None = None


@dataclass
class UniqueSets:
    """Distinct entity keys discovered by the analysis pass.

    Attributes:
        reference_codes: Distinct site codes referenced by rows
        programs: Distinct program names
        implementations: Implementation natural key -> descriptive fields
        attendance_fields: Attendance column names
        attendance_modalities: "<implementation key>|<field>" -> modality
        job_fields: Job/evidence column names
    """

    reference_codes: set[str] = field(default_factory=set)
    programs: set[str] = field(default_factory=set)
    implementations: dict[str, ImplementationInfo] = field(default_factory=dict)
    attendance_fields: set[str] = field(default_factory=set)
    attendance_modalities: dict[str, str] = field(default_factory=dict)
    job_fields: set[str] = field(default_factory=set)


@dataclass
class AnalysisResult:
    """Output of the analysis pass"""

    records: list[CsvRow]
    unique_sets: UniqueSets
    rows_analyzed: int = 0
    elapsed_ms: float = 0.0


@dataclass(frozen=True)
class SubRecordResult:
    """Outcome of one best-effort dependent-record write"""

    endpoint: str
    ok: bool
    error: str | None = None


@dataclass(frozen=True)
class RowOutcome:
    """Outcome of processing one source row"""

    row_number: int
    success: bool
    participant_id: int | None = None
    error: str | None = None
    sub_record_failures: int = 0


@dataclass(frozen=True)
class ErrorRecord:
    """One failing row as recorded in the error report"""

    participant_id: str
    email: str
    error: str
    row_number: int | None = None


@dataclass
class BatchRunSummary:
    """Aggregate of all row outcomes from the dispatch stage"""

    total_records: int = 0
    success_count: int = 0
    error_count: int = 0
    elapsed_ms: float = 0.0
    outcomes: list[RowOutcome] = field(default_factory=list)

    def record(self, outcome: RowOutcome) -> None:
        """Append an outcome and update the running counters."""
        self.outcomes.append(outcome)
        if outcome.success:
            self.success_count += 1
        else:
            self.error_count += 1


@dataclass(frozen=True)
class ProcessingResult:
    """Final result of one ingest run"""

    total_records: int
    success_count: int
    error_count: int
    processing_time_ms: float
    error_report_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON stats output."""
        return {
            "totalRecords": self.total_records,
            "successCount": self.success_count,
            "errorCount": self.error_count,
            "processingTimeMs": round(self.processing_time_ms),
            "errorReportPath": self.error_report_path,
        }


@dataclass(frozen=True)
class CacheValidation:
    """Result of a cache completeness check"""

    is_valid: bool
    issues: list[str] = field(default_factory=list)

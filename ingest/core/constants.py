"""Constants for participation ingest.

Column names and collection names mirror the source CSV export and the
Strapi content types, so they stay in the backend's (Spanish) vocabulary."""

from __future__ import annotations

# Natural-key separator
CACHE_KEY_SEPARATOR = "|"

# Paginated bulk prefetch
BULK_PRELOAD_PAGE_SIZE = 1000

# Source CSV columns (after header normalization)
COL_EXTERNAL_ID = "id"
COL_EMAIL = "email"
COL_REFERENCE_CODE = "cct"
COL_PROGRAM = "programa"
COL_IMPLEMENTATION = "implementacion"
COL_SCHOOL_CYCLE = "ciclo_escolar"
COL_PERIOD = "periodo_de_implementacion"

# Field-name prefixes that mark attendance and job columns
ATTENDANCE_FIELD_PREFIXES = ("asist_", "trip", "ses")
JOB_FIELD_PREFIXES = ("trabajo", "evidencia")
MODALITY_COLUMN_PREFIX = "modalidad_"

# Every implementation owns the same fixed set of modules
MODULE_NAMES = ("mod1", "mod2", "mod3")

# Survey columns; the column name is also the survey's natural key ("clave")
SURVEY_COLUMNS = ("encuesta_inicial", "encuesta_final")

# Tokens meaning "not applicable" in the source export
NOT_AVAILABLE_TOKENS = frozenset({"", "NA", "N/A"})

# Dependent-record collections written per row
PARTICIPATIONS_ENDPOINT = "participaciones"
APP_USAGE_ENDPOINT = "uso-app-participantes"
MODULE_PROGRESS_ENDPOINT = "modulo-progreso-registros"
SURVEY_COMPLETION_ENDPOINT = "encuesta-completada-registros"
ATTENDANCE_RECORD_ENDPOINT = "participante-asistencia-registros"
JOB_COMPLETION_ENDPOINT = "trabajo-realizado-registros"
EMAIL_ENDPOINT = "correo-participantes"

SURVEY_COMPLETED_STATE = "Completada"

# Progress logging intervals
ANALYSIS_PROGRESS_INTERVAL = 1000
PROGRAM_PROGRESS_INTERVAL = 10
IMPLEMENTATION_PROGRESS_INTERVAL = 5

# Reference extract (CCTs)
REFERENCE_ID_COLUMN = "id"
REFERENCE_CODE_COLUMN = "clave"
REFERENCE_BYTES_PER_RECORD = 100  # key string + int + dict slot overhead
REFERENCE_MAX_VALIDATION_ERRORS = 5
REFERENCE_PROGRESS_INTERVAL = 10_000

# Placeholders used in error reports
UNKNOWN_PARTICIPANT_ID = "UNKNOWN_ID"
NO_EMAIL_PLACEHOLDER = "NO_EMAIL"
ERROR_REPORT_HEADERS = ("Participant ID", "Email", "Row Number", "Error Description", "Timestamp")

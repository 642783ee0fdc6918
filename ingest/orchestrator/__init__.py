"""Run orchestration for participation ingest."""

from __future__ import annotations

from .orchestrator import IngestOrchestrator

__all__ = ["IngestOrchestrator"]

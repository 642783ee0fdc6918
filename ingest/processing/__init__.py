"""Pipeline stages for participation ingest.

Analysis collects the distinct entities of the source rows, precreation
creates the parent entities in dependency order and batch dispatch writes
one participation per row."""

from __future__ import annotations

from .analysis_stage import AnalysisStage, implementation_key
from .batch_dispatch_stage import BatchDispatchStage
from .best_effort import BestEffortGroup
from .precreation_stage import PrecreationStage

__all__ = [
    "AnalysisStage",
    "BatchDispatchStage",
    "BestEffortGroup",
    "PrecreationStage",
    "implementation_key",
]

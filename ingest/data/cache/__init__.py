"""Cache components for entity resolution.

Provides the per-type natural-key caches used during a run and the
adaptive reference-code (CCT) manager."""

from __future__ import annotations

from .keyed_cache import CacheContext, KeyedCache
from .reference_data_manager import (
    ReferenceDataManager,
    ReferencePerformanceMetrics,
    create_reference_data_manager,
)

__all__ = [
    "CacheContext",
    "KeyedCache",
    "ReferenceDataManager",
    "ReferencePerformanceMetrics",
    "create_reference_data_manager",
]

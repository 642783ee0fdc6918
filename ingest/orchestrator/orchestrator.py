"""Wires the pipeline stages for one ingest run.

Each run gets its own CacheContext, EntityResolver and reference-data
manager, so consecutive runs in one process never share cached ids."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable

from ..core.interfaces import ErrorCollector, RecordClient
from ..core.models import CsvRow, ProcessingResult
from ..data.cache.keyed_cache import CacheContext
from ..data.cache.reference_data_manager import ExtractOpener, create_reference_data_manager
from ..input.csv_source import read_csv_rows
from ..processing.analysis_stage import AnalysisStage
from ..processing.batch_dispatch_stage import BatchDispatchStage
from ..processing.precreation_stage import PrecreationStage
from ..reporting.error_reporter import CsvErrorReporter
from ..resolution.entity_resolver import EntityResolver
from ..settings import Settings

logger = logging.getLogger(__name__)


class IngestOrchestrator:
    """Runs analysis, precreation and batch dispatch over a set of rows"""

    def __init__(
        self,
        client: RecordClient,
        settings: Settings,
        error_collector: ErrorCollector | None = None,
        reference_opener: ExtractOpener | None = None,
    ):
        self.client = client
        self.settings = settings
        self.error_collector = error_collector or CsvErrorReporter(settings.error_report_path)
        self.reference_opener = reference_opener

        # Exposed after run() for inspection
        self.cache: CacheContext | None = None
        self.resolver: EntityResolver | None = None

    async def run(self, rows: Iterable[CsvRow]) -> ProcessingResult:
        """Ingest rows and return the aggregate result.

        The error report is written when at least one row failed.
        """
        start_time = time.perf_counter()
        settings = self.settings

        cache = CacheContext()
        resolver = EntityResolver(self.client, cache, skip_lookup=settings.skip_lookup)
        reference_manager = create_reference_data_manager(self.client, settings, opener=self.reference_opener)
        self.cache = cache
        self.resolver = resolver

        analysis = AnalysisStage().analyze(rows)

        precreation = PrecreationStage(self.client, cache, resolver, reference_manager)
        await precreation.run(analysis.unique_sets)

        dispatch = BatchDispatchStage(
            self.client,
            cache,
            resolver,
            reference_manager,
            self.error_collector,
            batch_size=settings.batch_size,
            chunk_size=settings.chunk_size,
            process_mode=settings.process_mode,
            skip_lookup=settings.skip_lookup,
        )
        summary = await dispatch.run(analysis.records)

        report_path = self.error_collector.save_error_report(settings.error_report_path) or None

        cache.log_stats("final")
        logger.info(f"Resolver stats: {resolver.stats().to_dict()}")
        logger.info(f"Reference data metrics: {reference_manager.get_performance_metrics().to_dict()}")

        result = ProcessingResult(
            total_records=summary.total_records,
            success_count=summary.success_count,
            error_count=summary.error_count,
            processing_time_ms=(time.perf_counter() - start_time) * 1000,
            error_report_path=report_path,
        )
        logger.info(
            f"Ingest complete: {result.success_count}/{result.total_records} succeeded, "
            f"{result.error_count} failed in {result.processing_time_ms:.0f}ms"
        )
        return result

    async def run_file(self, path: str) -> ProcessingResult:
        """Read the source CSV at path and ingest it.

        Raises:
            SourceDataError: the file is missing, unreadable, or empty
        """
        return await self.run(read_csv_rows(path))

#!/usr/bin/env python3
"""Process Participations - command-line entry point for participation ingest.

Reads a participant CSV, resolves every parent entity once, writes one
participation per row to Strapi and saves a CSV report of failing rows.

Usage:
    python -m ingest.process_participations --csv participants.csv [--ccts ccts_export.csv]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from dotenv import load_dotenv
from pydantic import ValidationError

from strapi import StrapiClient, StrapiConfig

from .core.errors import SourceDataError
from .core.models import ProcessingResult
from .logging_config import setup_logging
from .orchestrator import IngestOrchestrator
from .settings import Settings

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ingest participant CSV records into Strapi")
    parser.add_argument("--csv", required=True, help="Path of the participant CSV")
    parser.add_argument("--ccts", help="Path of the reference-code (CCT) extract")
    parser.add_argument(
        "--mode",
        choices=["parallel", "sequential"],
        help="Row dispatch mode (default from PROCESS_MODE)",
    )
    parser.add_argument("--batch-size", type=int, help="Rows per batch (default from BATCH_SIZE)")
    parser.add_argument(
        "--skip-lookup",
        action="store_true",
        help="Create entities without searching first (participants are still searched)",
    )
    parser.add_argument("--output", help="Path of the error report CSV")
    parser.add_argument("--stats-output", help="Write JSON stats to this file")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Environment settings with command-line overrides applied."""
    overrides: dict[str, Any] = {}
    if args.ccts:
        overrides["reference_data_path"] = args.ccts
    if args.mode:
        overrides["process_mode"] = args.mode
    if args.batch_size is not None:
        overrides["batch_size"] = args.batch_size
    if args.skip_lookup:
        overrides["skip_lookup"] = True
    if args.output:
        overrides["error_report_path"] = args.output

    # Init kwargs take precedence over environment values and are validated the same way
    return Settings(**overrides)


async def run_ingest(settings: Settings, csv_path: str) -> ProcessingResult:
    client = StrapiClient(StrapiConfig.from_settings(settings))
    try:
        orchestrator = IngestOrchestrator(client, settings)
        return await orchestrator.run_file(csv_path)
    finally:
        client.close()


def write_stats(path: str, stats: dict[str, Any]) -> None:
    with open(path, "w") as f:
        json.dump(stats, f)
    logger.info(f"Wrote stats to {path}")


def main() -> None:
    """Main entry point"""
    load_dotenv()
    args = build_parser().parse_args()
    setup_logging("cli", debug_override=args.debug)

    try:
        settings = settings_from_args(args)
    except ValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    config_errors = settings.validation_errors()
    if config_errors:
        for error in config_errors:
            logger.error(f"Configuration error: {error}")
        sys.exit(2)

    try:
        result = asyncio.run(run_ingest(settings, args.csv))
    except SourceDataError as e:
        logger.error(f"Fatal error: {e}")
        if args.stats_output:
            write_stats(args.stats_output, {"success": False, "error": str(e)})
        sys.exit(1)

    if args.stats_output:
        write_stats(args.stats_output, {"success": True, **result.to_dict()})

    print("\nIngest completed!")
    print(f"- Total records: {result.total_records}")
    print(f"- Succeeded: {result.success_count}")
    print(f"- Failed: {result.error_count}")
    print(f"- Time: {result.processing_time_ms / 1000:.1f}s")
    if result.error_report_path:
        print(f"- Error report: {result.error_report_path}")


if __name__ == "__main__":
    main()

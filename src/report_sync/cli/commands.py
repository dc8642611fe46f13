"""
CLI command implementations.

This module contains the implementation of the two CLI commands:
- run: Synchronize an uploaded record set and write the merged report
- report: Render a previously saved JSON report
"""

import argparse
import asyncio
import json
import logging
import sys

from utils.metrics import start_metrics_server
from utils.tracing import initialize_tracing, shutdown_tracing

from ..config import ProcessingConfig
from ..errors import PartialRunError, SyncError
from ..formatters import export_report_csv, export_report_json, format_report_console
from ..models import MergedReport, ProcessingProgress, Record
from ..pipeline import ReportSyncPipeline
from ..remote import HttpSyncService, RemoteSyncService
from .inputs import load_records

logger = logging.getLogger(__name__)

CONFIG_OPTIONS = (
    "chunk_size",
    "concurrency",
    "retry_attempts",
    "retry_delay",
    "retry_backoff",
    "pause_between_chunks",
    "poll_interval",
    "task_timeout",
)


def build_config(args: argparse.Namespace, record_count: int) -> ProcessingConfig:
    """
    Resolve processing settings: strategy or adaptive defaults, then
    REPORT_SYNC_* environment variables, then command-line flags
    """
    if args.strategy:
        base = ProcessingConfig.for_strategy(args.strategy)
    else:
        base = ProcessingConfig.for_volume(record_count)

    config = ProcessingConfig.from_env(base)
    return config.with_overrides(**{name: getattr(args, name, None) for name in CONFIG_OPTIONS})


def log_progress(progress: ProcessingProgress) -> None:
    eta = (
        f", ~{progress.estimated_time_remaining:.0f}s left"
        if progress.estimated_time_remaining
        else ""
    )
    logger.info(
        f"Progress {progress.percentage:.0f}% [{progress.status.value}/{progress.phase}] "
        f"chunks {progress.current_chunk}/{progress.total_chunks}, "
        f"records {progress.processed_records}/{progress.total_records}{eta}"
    )


async def run_sync(
    service: RemoteSyncService,
    config: ProcessingConfig,
    records: list[Record],
) -> MergedReport:
    """Run one pipeline and always close the service afterwards"""
    pipeline = ReportSyncPipeline(service, config=config, on_progress=log_progress)
    try:
        return await pipeline.run(records)
    finally:
        await service.close()


def write_report(report: MergedReport | dict, output_format: str, output: str | None) -> None:
    if output_format == "console":
        print(format_report_console(report))
        if output:
            export_report_json(report, output)
            logger.info(f"Report saved to {output}")
        return

    if not output:
        logger.error(f"Output file required for {output_format.upper()} format")
        sys.exit(1)

    if output_format == "csv":
        export_report_csv(report, output)
    else:
        export_report_json(report, output)
    logger.info(f"Report exported to {output}")


def cmd_run(args: argparse.Namespace, service: RemoteSyncService | None = None) -> None:
    """
    Synchronize an uploaded record set

    Args:
        args: Parsed command-line arguments
        service: Remote service to use instead of the HTTP client
    """
    logger.info(f"Starting report sync run for {args.input}")

    try:
        records = load_records(args.input, key_field=args.key_field)
        config = build_config(args, len(records))
        if service is None:
            service = HttpSyncService(args.endpoint, timeout=args.request_timeout)
    except (SyncError, ValueError, OSError) as e:
        logger.error(f"Cannot start run: {e}")
        sys.exit(1)

    logger.info(f"Processing config: {config.to_dict()}")

    if args.metrics_port:
        start_metrics_server(args.metrics_port)
    if args.otlp_endpoint:
        initialize_tracing(otlp_endpoint=args.otlp_endpoint)

    try:
        report = asyncio.run(run_sync(service, config, records))

    except PartialRunError as e:
        logger.error(f"Run failed: {e}")
        for failure in e.failures:
            logger.error(
                f"  chunk {failure.chunk_index + 1} ({len(failure.serial_numbers)} records, "
                f"{failure.stage}): {failure.error_type}: {failure.message}"
            )
        if args.output:
            with open(args.output, 'w') as f:
                json.dump(
                    {**e.to_dict(), "failed_serial_numbers": e.failed_serial_numbers()}, f, indent=2
                )
            logger.info(f"Failure details saved to {args.output}")
        sys.exit(1)

    except SyncError as e:
        logger.error(f"Run failed: {type(e).__name__}: {e}")
        sys.exit(1)

    finally:
        if args.otlp_endpoint:
            shutdown_tracing()

    write_report(report, args.format, args.output)


def cmd_report(args: argparse.Namespace) -> None:
    """
    Render a report saved by a previous run

    Args:
        args: Parsed command-line arguments
    """
    logger.info(f"Loading sync report from {args.input}")

    try:
        with open(args.input) as f:
            report = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to load report: {e}")
        sys.exit(1)

    if not isinstance(report, dict) or "groups" not in report:
        logger.error(f"{args.input} is not a sync report")
        sys.exit(1)

    write_report(report, args.format, args.output)

"""
Command-line argument parser configuration.

This module sets up the argument parser for the report-sync CLI tool,
defining all commands and their options.
"""

import argparse

from ..config import STRATEGIES
from ..models import DEFAULT_KEY_FIELD
from utils.retry import BACKOFF_STRATEGIES


def create_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="report-sync",
        description="Bulk synchronization of SIM sales reports against the remote store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Synchronize an upload and print the team summary
  report-sync run --input sales.csv --endpoint https://sync.example.com/api/actions

  # Conservative settings for a very large upload, report saved as JSON
  report-sync run --input sales.json --strategy conservative --format json --output report.json

  # Override individual settings
  report-sync run --input sales.csv --chunk-size 100 --concurrency 3 --retry-attempts 5

  # Render a previously saved report on the console
  report-sync report --input report.json --format console
        """
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default='INFO',
        help='Logging level (default: INFO)'
    )
    parser.add_argument(
        '--log-file',
        help='Also write logs to this file (rotated)'
    )
    parser.add_argument(
        '--json-logs',
        action='store_true',
        help='Emit logs as JSON lines'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # ========== Run command ==========
    run_parser = subparsers.add_parser('run', help='Synchronize an uploaded record set')
    run_parser.add_argument(
        '--input',
        required=True,
        help='CSV or JSON file with the uploaded records'
    )
    run_parser.add_argument(
        '--key-field',
        default=DEFAULT_KEY_FIELD,
        help=f'Column holding the serial number (default: {DEFAULT_KEY_FIELD})'
    )
    run_parser.add_argument(
        '--endpoint',
        help='Remote actions endpoint (default: REPORT_SYNC_ENDPOINT env var)'
    )
    run_parser.add_argument(
        '--request-timeout',
        type=float,
        default=30.0,
        help='Per-request HTTP timeout in seconds (default: 30)'
    )
    run_parser.add_argument(
        '--strategy',
        choices=sorted(STRATEGIES),
        help='Named processing preset (default: adaptive by record volume)'
    )
    run_parser.add_argument('--chunk-size', type=int, help='Records per chunk')
    run_parser.add_argument('--concurrency', type=int, help='Maximum dispatches in flight')
    run_parser.add_argument('--retry-attempts', type=int, help='Total attempts per remote call')
    run_parser.add_argument('--retry-delay', type=float, help='Base retry delay in seconds')
    run_parser.add_argument(
        '--retry-backoff',
        choices=BACKOFF_STRATEGIES,
        help='Retry delay growth'
    )
    run_parser.add_argument(
        '--pause-between-chunks',
        type=float,
        help='Pacing sleep after each dispatch in seconds'
    )
    run_parser.add_argument('--poll-interval', type=float, help='Seconds between polls of one task')
    run_parser.add_argument('--task-timeout', type=float, help='Maximum seconds per remote task')
    run_parser.add_argument(
        '--output',
        help='Output file path for report'
    )
    run_parser.add_argument(
        '--format',
        choices=['console', 'json', 'csv'],
        default='console',
        help='Output format (default: console)'
    )
    run_parser.add_argument(
        '--metrics-port',
        type=int,
        help='Expose Prometheus metrics on this port while running'
    )
    run_parser.add_argument(
        '--otlp-endpoint',
        help='Send traces to this OTLP collector (default: OTLP_ENDPOINT env var)'
    )

    # ========== Report command ==========
    report_parser = subparsers.add_parser('report', help='Render a saved JSON report')
    report_parser.add_argument(
        '--input',
        required=True,
        help='Input JSON report file'
    )
    report_parser.add_argument(
        '--format',
        choices=['console', 'json', 'csv'],
        default='console',
        help='Output format (default: console)'
    )
    report_parser.add_argument(
        '--output',
        help='Output file path (required for json and csv formats)'
    )

    return parser

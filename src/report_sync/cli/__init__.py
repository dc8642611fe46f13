"""
Command-line interface for bulk report synchronization.

Available commands:
- run: Synchronize an uploaded record set against the remote store
- report: Render a report saved by a previous run
"""

import sys

from utils.logging import setup_logging, shutdown_logging

from .commands import build_config, cmd_report, cmd_run
from .inputs import load_records
from .parser import create_parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the report-sync CLI"""
    parser = create_parser()
    args = parser.parse_args(argv)

    # Setup logging
    setup_logging(args.log_level, log_file=args.log_file, json_format=args.json_logs)

    # Execute command
    try:
        if args.command == 'run':
            cmd_run(args)
        elif args.command == 'report':
            cmd_report(args)
        else:
            parser.print_help()
            sys.exit(1)
    finally:
        shutdown_logging()


__all__ = [
    'main',
    'build_config',
    'cmd_run',
    'cmd_report',
    'create_parser',
    'load_records',
]


if __name__ == '__main__':
    main()

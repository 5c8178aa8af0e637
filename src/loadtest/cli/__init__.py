"""
Command-line interface for the load test harness.

Available commands:
- run: Execute a workload (built-in name, .py script or module:attr)
- list: Show built-in workloads
- report: Render a summary exported by a previous run
"""

import sys

from utils.logging import setup_logging, shutdown_logging

from .commands import cmd_list, cmd_report, cmd_run
from .parser import create_parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the loadtest CLI"""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(level=args.log_level, log_file=args.log_file, json_format=args.log_json)

    try:
        if args.command == 'run':
            code = cmd_run(args)
        elif args.command == 'list':
            code = cmd_list(args)
        elif args.command == 'report':
            code = cmd_report(args)
        else:
            parser.print_help()
            code = 1
    finally:
        shutdown_logging()
    sys.exit(code)


__all__ = [
    'main',
    'cmd_run',
    'cmd_list',
    'cmd_report',
    'create_parser',
]


if __name__ == '__main__':
    main()

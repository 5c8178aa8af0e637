"""
Command-line argument parser configuration.

This module sets up the argument parser for the loadtest CLI tool,
defining all commands and their options.
"""

import argparse
import os


def create_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="loadtest",
        description="Load generation harness for PostgreSQL and Kafka workloads",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the built-in CRUD workload against a local PostgreSQL
  loadtest run crud --env POSTGRES_DSN=postgresql://sa:sa@localhost:5432/testdb

  # Produce to a topic through the Kafka REST proxy, deleting it afterwards
  loadtest run producer --env BROKER_ADDRS=localhost:8082 --env DELETE_TOPIC_ON_TEARDOWN=true

  # Consume with a shorter wait window and export the summary
  loadtest run consumer --env CONSUME_TIMEOUT_MS=2000 --summary-export summary.json

  # Run a workload script, streaming samples to a file and to Prometheus
  loadtest run scripts/checkout.py --out json=samples.ndjson --out prometheus=9091

  # Show built-in workloads
  loadtest list

  # Render a previously exported summary
  loadtest report --input summary.json
        """
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=os.getenv('LOG_LEVEL', 'INFO').upper(),
        help='Logging level (default: INFO, or LOG_LEVEL)'
    )
    parser.add_argument(
        '--log-json',
        action='store_true',
        help='Emit logs as JSON lines'
    )
    parser.add_argument(
        '--log-file',
        default=os.getenv('LOG_FILE'),
        help='Also write logs to this file (rotated)'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # ========== Run command ==========
    run_parser = subparsers.add_parser('run', help='Run a workload')
    run_parser.add_argument(
        'script',
        help='Built-in workload name, path to a .py script, or module:attr'
    )
    run_parser.add_argument(
        '--env', '-e',
        action='append',
        default=[],
        metavar='KEY=VALUE',
        help='Set a configuration variable for this run (repeatable)'
    )
    run_parser.add_argument(
        '--out', '-o',
        action='append',
        default=[],
        metavar='OUTPUT',
        help='Stream samples to json=FILE or prometheus=PORT (repeatable)'
    )
    run_parser.add_argument(
        '--summary-export',
        metavar='FILE',
        help='Write the end-of-run summary as JSON'
    )
    run_parser.add_argument(
        '--otlp-endpoint',
        default=os.getenv('OTLP_ENDPOINT'),
        help='Export traces to this OTLP gRPC endpoint (default: OTLP_ENDPOINT)'
    )
    run_parser.add_argument(
        '--quiet', '-q',
        action='store_true',
        help='Do not print the summary to stdout'
    )

    # ========== List command ==========
    subparsers.add_parser('list', help='List built-in workloads')

    # ========== Report command ==========
    report_parser = subparsers.add_parser('report', help='Render a summary from a previous run')
    report_parser.add_argument(
        '--input',
        required=True,
        help='Summary JSON written by --summary-export'
    )

    return parser

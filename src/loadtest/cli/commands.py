"""
CLI command implementations.

This module contains the implementation of the three CLI commands:
- run: Execute a workload and report the verdict as the exit code
- list: Show the built-in workloads
- report: Render a summary exported by a previous run
"""

import argparse
import logging
import os
import signal

from utils.tracing import initialize_tracing, setup_auto_instrumentation, shutdown_tracing

from ..config import HarnessConfig, parse_env_pairs
from ..errors import ConfigurationError
from ..metrics import MetricSink
from ..orchestrator import EXIT_CONFIGURATION_ERROR, RunOrchestrator
from ..outputs import create_output, parse_output_spec
from ..report import export_summary_json, format_summary_console, load_summary
from ..workload import load_workload
from ..workloads import BUILTIN_WORKLOADS

logger = logging.getLogger(__name__)


def _install_interrupt_handler(orchestrator: RunOrchestrator):
    """First Ctrl-C aborts the run gracefully; a second one exits immediately."""

    def handler(signum, frame):
        if orchestrator.abort_reason is None:
            logger.warning("Interrupt received, stopping (press Ctrl-C again to force)")
            orchestrator.abort()
        else:
            signal.signal(signal.SIGINT, signal.default_int_handler)
            raise KeyboardInterrupt

    return signal.signal(signal.SIGINT, handler)


def cmd_run(args: argparse.Namespace) -> int:
    """
    Run a workload

    Args:
        args: Parsed command-line arguments

    Returns:
        Process exit code (0 pass, 99 thresholds failed, 104 configuration
        error, 105 interrupted, 107 setup error)
    """
    try:
        config = HarnessConfig.from_env(parse_env_pairs(args.env))
        output_specs = [parse_output_spec(out) for out in args.out]
        workload = load_workload(args.script)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIGURATION_ERROR

    console_spans = os.getenv("TRACE_CONSOLE", "").lower() == "true"
    tracing = bool(args.otlp_endpoint) or console_spans
    if tracing:
        initialize_tracing(otlp_endpoint=args.otlp_endpoint, console_export=console_spans)
        setup_auto_instrumentation()

    sink = MetricSink()
    outputs = []
    try:
        for spec in output_specs:
            output = create_output(spec)
            try:
                output.start()
            except (OSError, RuntimeError) as e:
                logger.error(f"Cannot start {spec.kind} output '{spec.target}': {e}")
                return EXIT_CONFIGURATION_ERROR
            outputs.append(output)
            sink.add_listener(output)

        logger.info(f"Running workload '{workload.name}'")
        orchestrator = RunOrchestrator(workload, config, sink)
        previous_handler = _install_interrupt_handler(orchestrator)
        try:
            result = orchestrator.run()
        finally:
            signal.signal(signal.SIGINT, previous_handler)
    finally:
        for output in outputs:
            sink.remove_listener(output)
            output.stop()
        if tracing:
            shutdown_tracing()

    summary = result.to_dict()
    if not args.quiet:
        print(format_summary_console(summary))
    if args.summary_export:
        export_summary_json(summary, args.summary_export)
        logger.info(f"Summary exported to {args.summary_export}")
    return result.exit_code


def cmd_list(args: argparse.Namespace) -> int:
    """
    List built-in workloads

    Args:
        args: Parsed command-line arguments
    """
    for name, workload_class in sorted(BUILTIN_WORKLOADS.items()):
        print(f"{name:<10} {workload_class.description}")
    return 0


def cmd_report(args: argparse.Namespace) -> int:
    """
    Render a summary exported by a previous run

    Args:
        args: Parsed command-line arguments
    """
    logger.info(f"Loading run summary from {args.input}")
    try:
        summary = load_summary(args.input)
    except ConfigurationError as e:
        logger.error(f"Failed to process summary: {e}")
        return 1
    print(format_summary_console(summary))
    return 0

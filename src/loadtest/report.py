"""
End-of-run summary formatting and export.

All functions work on the dictionary form of a RunResult (``to_dict()``),
so a summary exported with ``--summary-export`` can be rendered again later
with ``loadtest report --input FILE``.
"""

import json
from typing import Any

from .errors import ConfigurationError


def export_summary_json(summary: dict[str, Any], output_path: str) -> None:
    """
    Export a run summary to a JSON file

    Args:
        summary: RunResult.to_dict() output
        output_path: Path to output file
    """
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(summary, f, indent=2)


def load_summary(input_path: str) -> dict[str, Any]:
    """
    Load a summary previously written by export_summary_json.

    Raises:
        ConfigurationError: If the file is missing or not a run summary
    """
    try:
        with open(input_path, encoding="utf-8") as f:
            summary = json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Summary file not found: {input_path}") from None
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Summary file {input_path} is not valid JSON: {e}") from None
    if not isinstance(summary, dict) or "metrics" not in summary:
        raise ConfigurationError(f"{input_path} does not contain a run summary")
    return summary


def _fmt(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        if value.is_integer() and abs(value) < 1e15:
            return f"{int(value):,}"
        return f"{value:,.3f}"
    if isinstance(value, int):
        return f"{value:,}"
    return str(value)


def _format_metric(name: str, data: dict[str, Any]) -> str:
    kind = data.get("type")
    if kind == "trend":
        stats = " ".join(
            f"{key}={_fmt(data.get(key))}"
            for key in ("avg", "min", "med", "max", "p(90)", "p(95)", "p(99)")
        )
        return f"  {name:<32} {stats} count={_fmt(data.get('count'))}"
    if kind == "counter":
        return f"  {name:<32} {_fmt(data.get('count'))}  ({_fmt(data.get('rate'))}/s)"
    if kind == "rate":
        if not data.get("defined", True):
            return f"  {name:<32} no data"
        return (
            f"  {name:<32} {data.get('rate', 0.0) * 100:.2f}%  "
            f"({_fmt(data.get('passes'))} / {_fmt(data.get('passes', 0) + data.get('fails', 0))})"
        )
    return (
        f"  {name:<32} value={_fmt(data.get('value'))} "
        f"min={_fmt(data.get('min'))} max={_fmt(data.get('max'))}"
    )


def format_summary_console(summary: dict[str, Any]) -> str:
    """
    Format a run summary for console output

    Args:
        summary: RunResult.to_dict() output

    Returns:
        Formatted string for console display
    """
    lines = []

    lines.append("=" * 80)
    lines.append(f"LOAD TEST SUMMARY: {summary.get('workload')}")
    lines.append("=" * 80)
    lines.append(f"Status: {'PASSED' if summary.get('passed') else 'FAILED'}")
    lines.append(f"Exit Code: {summary.get('exit_code')}")
    lines.append(f"Started: {summary.get('started_at')}")
    lines.append(f"Duration: {summary.get('duration_seconds', 0.0):.1f}s")

    scheduler = summary.get("scheduler")
    if scheduler:
        lines.append(f"Executor: {summary.get('options', {}).get('executor', '-')}")
        lines.append(f"Stop Reason: {scheduler.get('stop_reason')}")
        lines.append(
            f"VUs: max {scheduler.get('max_vus')}, peak active {scheduler.get('max_active_vus')}"
        )
        lines.append(
            f"Iterations: {_fmt(scheduler.get('iterations'))} "
            f"(failed {_fmt(scheduler.get('iterations_failed'))}, "
            f"interrupted {_fmt(scheduler.get('iterations_interrupted'))})"
        )
    if summary.get("abort_reason"):
        lines.append(f"Aborted: {summary['abort_reason']}")
    if summary.get("threshold_failure"):
        lines.append(f"Failed: {summary['threshold_failure']}")
    lines.append("")

    errors = list(summary.get("configuration_errors") or [])
    for key in ("setup_error", "teardown_error"):
        if summary.get(key):
            errors.append(f"{key.replace('_', ' ')}: {summary[key]}")
    if errors:
        lines.append("ERRORS")
        lines.append("-" * 80)
        for error in errors:
            lines.append(f"  {error}")
        lines.append("")

    checks = summary.get("checks") or {}
    if checks:
        lines.append("CHECKS")
        lines.append("-" * 80)
        for name, tally in checks.items():
            mark = "✓" if tally.get("fails", 0) == 0 else "✗"
            lines.append(
                f"  {mark} {name}: {tally.get('rate', 0.0) * 100:.2f}% "
                f"({tally.get('passes')} passed, {tally.get('fails')} failed)"
            )
        lines.append("")

    thresholds = summary.get("thresholds") or []
    if thresholds:
        lines.append("THRESHOLDS")
        lines.append("-" * 80)
        for threshold in thresholds:
            if threshold.get("no_data"):
                mark, note = "✓", " (no data)"
            elif threshold.get("passed"):
                mark, note = "✓", f" (observed {_fmt(threshold.get('observed'))})"
            else:
                mark = "✗"
                note = f" ({threshold['error']})" if threshold.get("error") else (
                    f" (observed {_fmt(threshold.get('observed'))})"
                )
            lines.append(f"  {mark} {threshold['series']}: {threshold['expression']}{note}")
        lines.append("")

    lines.append("METRICS")
    lines.append("-" * 80)
    for name, data in sorted((summary.get("metrics") or {}).items()):
        lines.append(_format_metric(name, data))
    lines.append("")

    lines.append("=" * 80)

    return "\n".join(lines)

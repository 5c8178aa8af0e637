"""
Mutation testing configuration for mutmut.

Mutates src/loadtest and src/utils; the unit and property suites are the
kill set. Log calls and timing-only constants are skipped.
"""

SKIPPED_PREFIXES = (
    "logger.",
    "logging.",
    "vu.log.",
    "print(",
)

# Prometheus histogram buckets and help strings only change exposition
SKIPPED_FRAGMENTS = (
    "buckets=",
    '"""',
    "'''",
)


def pre_mutation(context):
    """Skip files and lines whose mutants only change output, not behaviour."""
    if 'tests/' in context.filename or context.filename.endswith('__init__.py'):
        context.skip = True
        return

    line = context.current_source_line.strip()
    if line.startswith(SKIPPED_PREFIXES) or line == 'pass':
        context.skip = True
    elif any(fragment in line for fragment in SKIPPED_FRAGMENTS):
        context.skip = True

    # Scheduler timing mutants need the slower timing tests
    if context.filename.endswith('scheduler/scheduler.py'):
        context.config.test_command = (
            "python -m pytest -x -q tests/unit/test_scheduler.py tests/unit/test_orchestrator.py"
        )

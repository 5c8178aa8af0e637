"""
Load generation harness for PostgreSQL and Kafka workloads

Drives virtual users through a staged load profile, records timing and
outcome samples into typed metric series, and turns declared thresholds
into a pass/fail verdict and process exit code.

Components:
- metrics: Metric sink, series aggregates and Prometheus exposition
- scheduler: Ramp profiles and the virtual-user scheduler
- backends: PostgreSQL and Kafka REST proxy clients
- thresholds: Threshold parsing and evaluation
- orchestrator: Run lifecycle (setup, load, teardown, verdict)
- workloads: Built-in crud, producer and consumer workloads

Usage:
    from loadtest.orchestrator import RunOrchestrator
    from loadtest.workload import load_workload

    result = RunOrchestrator(load_workload("crud")).run()
    print(result.exit_code)
"""

__version__ = "1.0.0"
__all__ = ["metrics", "scheduler", "backends", "thresholds", "orchestrator", "workloads"]

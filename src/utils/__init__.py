"""
Shared infrastructure for the load test harness

Provides:
- logging: Console/JSON log formatting and context loggers
- tracing: OpenTelemetry tracing helpers
- retry: Backoff strategies and the retry decorator
- db_pool: Pooled PostgreSQL connections
"""

__version__ = "1.0.0"
__all__ = ["logging", "tracing", "retry", "db_pool"]

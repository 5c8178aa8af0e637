"""PostgreSQL connection pool implementation."""

from typing import Any

import psycopg2
import psycopg2.extensions
from opentelemetry import trace

from utils.tracing import trace_operation

from .base import BaseConnectionPool


class PostgresConnectionPool(BaseConnectionPool):
    """Connection pool for PostgreSQL databases."""

    def __init__(
        self,
        dsn: str,
        connect_timeout: int = 10,
        application_name: str = "perf-loadtest",
        **kwargs: Any,
    ):
        """
        Initialize PostgreSQL connection pool.

        Args:
            dsn: libpq connection string or URI
                 (e.g. postgresql://sa:sa@localhost:5432/testdb)
            connect_timeout: Seconds to wait when opening a connection
            application_name: Reported in pg_stat_activity
            **kwargs: Additional arguments for BaseConnectionPool
        """
        self.dsn = dsn
        self.connect_timeout = connect_timeout
        self.application_name = application_name

        super().__init__(**kwargs)

    def _create_connection(self) -> psycopg2.extensions.connection:
        """Create a new PostgreSQL connection."""
        params = psycopg2.extensions.parse_dsn(self.dsn)
        with trace_operation(
            "postgres_connect",
            kind=trace.SpanKind.CLIENT,
            db_host=params.get("host", "localhost"),
            db_name=params.get("dbname", ""),
        ):
            conn = psycopg2.connect(
                self.dsn,
                connect_timeout=self.connect_timeout,
                application_name=self.application_name,
            )
            # Every statement commits on its own; nothing is left open in the pool
            conn.set_session(autocommit=True)
            return conn

    def _is_connection_healthy(self, conn: psycopg2.extensions.connection) -> bool:
        """Check if PostgreSQL connection is healthy."""
        if conn is None or conn.closed:
            return False

        try:
            with conn.cursor() as cursor:
                cursor.execute("SELECT 1")
                cursor.fetchone()
            return True
        except (psycopg2.Error, psycopg2.Warning):
            return False

    def _close_connection(self, conn: psycopg2.extensions.connection) -> None:
        """Close PostgreSQL connection."""
        if conn is not None and not conn.closed:
            conn.close()

    def _get_db_type(self) -> str:
        """Get database type for metrics."""
        return "postgresql"

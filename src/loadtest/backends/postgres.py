"""PostgreSQL implementation of the relational backend client."""

import logging
from typing import Any

import psycopg2
import psycopg2.errors
import psycopg2.extras
from opentelemetry import trace

from utils.db_pool import (
    PoolClosedError,
    PoolExhaustedError,
    PostgresConnectionPool,
)
from utils.tracing import trace_operation

from .base import (
    BackendProtocolError,
    BackendTimeout,
    BackendTransportError,
    Params,
    RelationalClient,
)

logger = logging.getLogger(__name__)


def _verb(statement: str) -> str:
    words = statement.split(None, 1)
    return words[0].upper() if words else ""


class PostgresClient(RelationalClient):
    """
    Relational client backed by a shared psycopg2 connection pool.

    Each call checks a connection out of the pool, so one client instance
    can be handed to every virtual user; the pool's max_size is the
    connection limit for the whole run.
    """

    def __init__(self, pool: PostgresConnectionPool, owns_pool: bool = True):
        self.pool = pool
        self.owns_pool = owns_pool

    @classmethod
    def from_dsn(cls, dsn: str, max_connections: int = 50, **pool_kwargs: Any) -> "PostgresClient":
        """Open a pool for ``dsn`` and wrap it in a client that owns it."""
        try:
            pool = PostgresConnectionPool(
                dsn=dsn, min_size=0, max_size=max_connections, pool_name="loadtest", **pool_kwargs
            )
        except psycopg2.Error as e:
            raise BackendTransportError(f"Cannot connect to PostgreSQL: {e}", "connect") from e
        return cls(pool, owns_pool=True)

    def _run(self, operation: str, statement: str, params: Params, timeout: float | None, fetch: bool):
        with trace_operation(
            f"postgres_{operation}",
            kind=trace.SpanKind.CLIENT,
            db_statement=_verb(statement),
        ):
            try:
                with self.pool.acquire(timeout=timeout) as conn:
                    cursor_factory = psycopg2.extras.RealDictCursor if fetch else None
                    with conn.cursor(cursor_factory=cursor_factory) as cursor:
                        if timeout is not None:
                            cursor.execute(
                                "SET statement_timeout = %s", (max(int(timeout * 1000), 1),)
                            )
                        try:
                            cursor.execute(statement, params)
                            if fetch:
                                return [dict(row) for row in cursor.fetchall()]
                            return max(cursor.rowcount, 0)
                        finally:
                            if timeout is not None and not conn.closed:
                                cursor.execute("RESET statement_timeout")
            except PoolExhaustedError as e:
                raise BackendTimeout(str(e), operation) from e
            except PoolClosedError as e:
                raise BackendTransportError(str(e), operation) from e
            except psycopg2.errors.QueryCanceled as e:
                raise BackendTimeout(f"Statement timed out: {e}".strip(), operation) from e
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
                raise BackendTransportError(str(e).strip(), operation) from e
            except psycopg2.Error as e:
                raise BackendProtocolError(str(e).strip(), operation) from e

    def execute(self, statement: str, params: Params = None, timeout: float | None = None) -> int:
        return self._run("execute", statement, params, timeout, fetch=False)

    def query(
        self, statement: str, params: Params = None, timeout: float | None = None
    ) -> list[dict[str, Any]]:
        return self._run("query", statement, params, timeout, fetch=True)

    def close(self) -> None:
        if self.owns_pool and not self.pool.closed:
            self.pool.close()

"""
Base classes and functionality for database connection pooling.

Provides a thread-safe connection pool shared by all virtual users of a run.
The pool bounds concurrent backend connections (max_size), recycles stale
connections and reports its state through Prometheus gauges.
"""

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from queue import Empty, Full, Queue
from typing import Any

from opentelemetry import trace
from prometheus_client import Counter, Gauge, Histogram

from utils.tracing import trace_operation

logger = logging.getLogger(__name__)


CONNECTION_POOL_SIZE = Gauge(
    "loadtest_db_pool_size",
    "Current size of database connection pool",
    ["database_type", "pool_name"],
)

CONNECTION_POOL_ACTIVE = Gauge(
    "loadtest_db_pool_active",
    "Number of connections checked out by virtual users",
    ["database_type", "pool_name"],
)

CONNECTION_POOL_WAITS = Counter(
    "loadtest_db_pool_waits_total",
    "Number of times a virtual user had to wait for a connection",
    ["database_type", "pool_name"],
)

CONNECTION_POOL_ERRORS = Counter(
    "loadtest_db_pool_errors_total",
    "Number of connection pool errors",
    ["database_type", "pool_name", "error_type"],
)

CONNECTION_ACQUIRE_TIME = Histogram(
    "loadtest_db_pool_acquire_seconds",
    "Time to acquire a connection from pool",
    ["database_type", "pool_name"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)


@dataclass
class PooledConnection:
    """Wrapper for a pooled database connection with metadata."""

    connection: Any
    created_at: float = field(default_factory=time.monotonic)
    last_used: float = field(default_factory=time.monotonic)
    use_count: int = 0

    def mark_used(self) -> None:
        """Mark connection as used and update timestamp."""
        self.last_used = time.monotonic()
        self.use_count += 1


class ConnectionPoolError(Exception):
    """Base exception for connection pool errors."""

    pass


class PoolExhaustedError(ConnectionPoolError):
    """Raised when no connection becomes available within acquire_timeout."""

    pass


class PoolClosedError(ConnectionPoolError):
    """Raised when attempting to use a closed pool."""

    pass


class BaseConnectionPool:
    """
    Base class for database connection pools.

    Connections are created lazily up to max_size. A connection is validated
    when it is checked out if it has been idle longer than max_idle_time, and
    replaced once it is older than max_lifetime.
    """

    def __init__(
        self,
        min_size: int = 1,
        max_size: int = 10,
        max_idle_time: float = 300,
        max_lifetime: float = 3600,
        acquire_timeout: float = 30.0,
        pool_name: str = "default",
    ):
        """
        Initialize connection pool.

        Args:
            min_size: Connections opened eagerly when the pool is created
            max_size: Maximum number of connections allowed
            max_idle_time: Idle seconds after which a connection is re-validated
            max_lifetime: Maximum connection lifetime in seconds
            acquire_timeout: Timeout for acquiring connection in seconds
            pool_name: Name of the pool for metrics
        """
        if max_size < 1 or min_size < 0 or min_size > max_size:
            raise ValueError(
                f"Invalid pool sizing: min_size={min_size}, max_size={max_size}"
            )
        self.min_size = min_size
        self.max_size = max_size
        self.max_idle_time = max_idle_time
        self.max_lifetime = max_lifetime
        self.acquire_timeout = acquire_timeout
        self.pool_name = pool_name

        self._idle: Queue[PooledConnection] = Queue(maxsize=max_size)
        self._all_connections: list[PooledConnection] = []
        # Slots reserved by threads still opening a connection
        self._pending = 0
        self._lock = threading.RLock()
        self._closed = False

        for _ in range(min_size):
            self._idle.put(self._open())

        logger.info(
            f"Initialized {self.__class__.__name__} '{pool_name}' "
            f"(min={min_size}, max={max_size})"
        )

    def _create_connection(self) -> Any:
        """Create a new database connection. Must be implemented by subclasses."""
        raise NotImplementedError

    def _is_connection_healthy(self, conn: Any) -> bool:
        """Check if connection is healthy. Must be implemented by subclasses."""
        raise NotImplementedError

    def _close_connection(self, conn: Any) -> None:
        """Close a database connection. Must be implemented by subclasses."""
        raise NotImplementedError

    def _get_db_type(self) -> str:
        """Get database type for metrics. Must be implemented by subclasses."""
        raise NotImplementedError

    def _labels(self, **extra: str) -> dict[str, str]:
        return {"database_type": self._get_db_type(), "pool_name": self.pool_name, **extra}

    def _open(self, reserved: bool = False) -> PooledConnection:
        """Open a connection; ``reserved`` releases a slot taken in _checkout."""
        try:
            pooled = PooledConnection(connection=self._create_connection())
        except Exception:
            if reserved:
                with self._lock:
                    self._pending -= 1
            CONNECTION_POOL_ERRORS.labels(**self._labels(error_type="creation")).inc()
            raise
        with self._lock:
            self._all_connections.append(pooled)
            if reserved:
                self._pending -= 1
        self._update_metrics()
        return pooled

    def _discard(self, pooled: PooledConnection) -> None:
        with self._lock:
            if pooled not in self._all_connections:
                return
            self._all_connections.remove(pooled)
        try:
            self._close_connection(pooled.connection)
        except Exception as e:
            logger.warning(f"Error closing connection: {e}")
        self._update_metrics()

    def _is_usable(self, pooled: PooledConnection) -> bool:
        now = time.monotonic()
        if now - pooled.created_at > self.max_lifetime:
            logger.debug("Connection exceeded max lifetime, recycling")
            return False
        if now - pooled.last_used > self.max_idle_time:
            try:
                return self._is_connection_healthy(pooled.connection)
            except Exception as e:
                logger.warning(f"Health check failed: {e}")
                CONNECTION_POOL_ERRORS.labels(**self._labels(error_type="health_check")).inc()
                return False
        return True

    def _update_metrics(self) -> None:
        with self._lock:
            total = len(self._all_connections)
        idle = self._idle.qsize()
        CONNECTION_POOL_SIZE.labels(**self._labels()).set(total)
        CONNECTION_POOL_ACTIVE.labels(**self._labels()).set(max(total - idle, 0))

    def _checkout(self, deadline: float) -> PooledConnection:
        waited = False
        while True:
            try:
                pooled = self._idle.get_nowait()
            except Empty:
                with self._lock:
                    can_grow = len(self._all_connections) + self._pending < self.max_size
                    if can_grow:
                        self._pending += 1
                if can_grow:
                    return self._open(reserved=True)

                if not waited:
                    CONNECTION_POOL_WAITS.labels(**self._labels()).inc()
                    waited = True
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise PoolExhaustedError(
                        f"No connection available within {self.acquire_timeout}s"
                    )
                try:
                    pooled = self._idle.get(timeout=min(remaining, 0.1))
                except Empty:
                    continue

            if self._is_usable(pooled):
                return pooled
            logger.info("Connection unhealthy, recycling and retrying")
            self._discard(pooled)

    @contextmanager
    def acquire(self, timeout: float | None = None) -> Iterator[Any]:
        """
        Acquire a connection from the pool.

        Args:
            timeout: Override of acquire_timeout for this checkout

        Yields:
            Database connection

        Raises:
            PoolClosedError: If pool is closed
            PoolExhaustedError: If no connection available within timeout
        """
        if self._closed:
            raise PoolClosedError("Connection pool is closed")

        start = time.monotonic()
        deadline = start + (self.acquire_timeout if timeout is None else timeout)

        with trace_operation(
            "db_pool_acquire",
            kind=trace.SpanKind.CLIENT,
            database_type=self._get_db_type(),
            pool_name=self.pool_name,
        ):
            pooled = self._checkout(deadline)

        pooled.mark_used()
        self._update_metrics()
        CONNECTION_ACQUIRE_TIME.labels(**self._labels()).observe(time.monotonic() - start)

        broken = False
        try:
            yield pooled.connection
        except BaseException:
            broken = not self._safe_health_check(pooled)
            raise
        finally:
            if self._closed or broken:
                self._discard(pooled)
            else:
                try:
                    self._idle.put_nowait(pooled)
                except Full:
                    self._discard(pooled)
                self._update_metrics()

    def _safe_health_check(self, pooled: PooledConnection) -> bool:
        try:
            return self._is_connection_healthy(pooled.connection)
        except Exception:
            return False

    def close(self) -> None:
        """Close all connections and shutdown the pool."""
        if self._closed:
            return

        logger.info(f"Closing connection pool '{self.pool_name}'")
        self._closed = True

        with self._lock:
            connections = list(self._all_connections)

        for pooled in connections:
            self._discard(pooled)

        while True:
            try:
                self._idle.get_nowait()
            except Empty:
                break

        logger.info(f"Connection pool '{self.pool_name}' closed")

    @property
    def closed(self) -> bool:
        return self._closed

    def get_stats(self) -> dict[str, Any]:
        """Get pool statistics."""
        with self._lock:
            total_size = len(self._all_connections)
        idle_size = self._idle.qsize()

        return {
            "pool_name": self.pool_name,
            "total_connections": total_size,
            "idle_connections": idle_size,
            "active_connections": total_size - idle_size,
            "min_size": self.min_size,
            "max_size": self.max_size,
            "closed": self._closed,
        }

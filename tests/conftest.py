"""
Pytest configuration and fixtures for load test harness tests.
Provides in-memory backends so workloads can run without PostgreSQL or Kafka.
"""

import itertools
import threading
from collections import deque
from pathlib import Path

import pytest

from loadtest.backends import (
    BackendTimeout,
    Message,
    MessageBrokerClient,
    RelationalClient,
)
from loadtest.config import HarnessConfig
from loadtest.metrics import MetricSink


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "integration: mark test as integration test")


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Get project root directory."""
    return Path(__file__).parent.parent


class FakeRelationalClient(RelationalClient):
    """In-memory stand-in for PostgresClient that understands the crud statements."""

    def __init__(self):
        self.rows: dict[int, dict] = {}
        self.statements: list[str] = []
        self.closed = False
        self.fail_with: Exception | None = None
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _check(self, statement: str) -> None:
        self.statements.append(statement.strip().split(None, 1)[0].upper())
        if self.fail_with is not None:
            raise self.fail_with

    def execute(self, statement, params=None, timeout=None):
        with self._lock:
            self._check(statement)
            verb = statement.strip().split(None, 1)[0].upper()
            if verb == "UPDATE":
                last_name, row_id = params
                if row_id in self.rows:
                    self.rows[row_id]["last_name"] = last_name
                    return 1
                return 0
            if verb == "DELETE":
                return 1 if self.rows.pop(params[0], None) is not None else 0
            return 0

    def query(self, statement, params=None, timeout=None):
        with self._lock:
            self._check(statement)
            verb = statement.strip().split(None, 1)[0].upper()
            if verb == "INSERT":
                row_id = next(self._ids)
                first_name, last_name, email = params
                self.rows[row_id] = {
                    "id": row_id,
                    "first_name": first_name,
                    "last_name": last_name,
                    "email": email,
                }
                return [{"id": row_id}]
            if verb == "SELECT":
                row = self.rows.get(params[0])
                return [dict(row)] if row else []
            return []

    def close(self):
        self.closed = True


class FakeBroker:
    """Shared in-memory topic store; each client() is one connection to it."""

    def __init__(self):
        self.topics: set[str] = set()
        self.messages: deque[Message] = deque()
        self.produce_calls = 0
        self.consume_calls = 0
        self.consume_failures: deque[Exception] = deque()
        self.clients: list["FakeBrokerClient"] = []
        self.lock = threading.Lock()

    def client(self, config=None) -> "FakeBrokerClient":
        client = FakeBrokerClient(self)
        self.clients.append(client)
        return client


class FakeBrokerClient(MessageBrokerClient):
    def __init__(self, broker: FakeBroker):
        self.broker = broker
        self.closed = False

    def produce(self, messages, timeout=None):
        with self.broker.lock:
            self.broker.produce_calls += 1
            self.broker.messages.extend(messages)
        return True

    def consume(self, max_count, timeout):
        with self.broker.lock:
            self.broker.consume_calls += 1
            if self.broker.consume_failures:
                raise self.broker.consume_failures.popleft()
            count = min(max_count, len(self.broker.messages))
            return [self.broker.messages.popleft() for _ in range(count)]

    def create_topic(self, name, partitions=1, replication_factor=1):
        with self.broker.lock:
            if name in self.broker.topics:
                return False
            self.broker.topics.add(name)
            return True

    def delete_topic(self, name):
        with self.broker.lock:
            if name not in self.broker.topics:
                return False
            self.broker.topics.discard(name)
            return True

    def list_topics(self):
        return sorted(self.broker.topics)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_db() -> FakeRelationalClient:
    return FakeRelationalClient()


@pytest.fixture
def fake_broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def sink() -> MetricSink:
    return MetricSink()


@pytest.fixture
def config() -> HarnessConfig:
    """Defaults only, independent of the developer's environment."""
    return HarnessConfig.from_env(environ={})


@pytest.fixture
def broker_timeout() -> BackendTimeout:
    return BackendTimeout("no records within wait window", "consume")

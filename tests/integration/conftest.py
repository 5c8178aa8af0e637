"""
Fixtures for integration tests against the docker-compose environment.

Tests are skipped when PostgreSQL or the Kafka REST proxy is not reachable,
so ``pytest -m integration`` is safe to run without the stack.
"""

import os
import uuid

import psycopg2
import pytest
import requests

from loadtest.config import HarnessConfig


@pytest.fixture(scope="session")
def postgres_dsn() -> str:
    dsn = os.getenv("POSTGRES_DSN", "postgresql://sa:sa@localhost:5432/testdb")
    try:
        psycopg2.connect(dsn, connect_timeout=3).close()
    except psycopg2.OperationalError as e:
        pytest.skip(f"PostgreSQL not reachable: {e}")
    return dsn


@pytest.fixture(scope="session")
def broker_addrs() -> str:
    addrs = os.getenv("BROKER_ADDRS", "localhost:8082")
    first = addrs.split(",")[0].strip()
    url = first if "://" in first else f"http://{first}"
    try:
        requests.get(f"{url}/topics", timeout=3).raise_for_status()
    except requests.RequestException as e:
        pytest.skip(f"Kafka REST proxy not reachable: {e}")
    return addrs


@pytest.fixture
def topic() -> str:
    return f"loadtest-it-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def postgres_config(postgres_dsn) -> HarnessConfig:
    return HarnessConfig.from_env(environ={"POSTGRES_DSN": postgres_dsn, "POOL_MAX_SIZE": "5"})


@pytest.fixture
def kafka_config(broker_addrs, topic) -> HarnessConfig:
    return HarnessConfig.from_env(
        environ={
            "BROKER_ADDRS": broker_addrs,
            "TOPIC": topic,
            "GROUP_ID": f"{topic}-readers",
            "CONSUME_TIMEOUT_MS": "2000",
            "MAX_EMPTY_READS": "2",
            "DELETE_TOPIC_ON_TEARDOWN": "true",
            "EMPTY_READ_BACKOFF": "none",
        }
    )

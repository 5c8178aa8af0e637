"""
CRUD round-trip against PostgreSQL.

Each iteration inserts a fake person into ``tb.perf_test`` (reading the new
id back through RETURNING), updates its last name, selects it and deletes
it, timing every statement separately.
"""

import logging
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from faker import Faker

from utils.retry import retry_with_backoff

from ..backends import BackendError, BackendTransportError, PostgresClient, RelationalClient
from ..config import HarnessConfig
from ..metrics import MetricSink
from ..scheduler import VirtualUser
from ..workload import RunContext, Workload

logger = logging.getLogger(__name__)

SCHEMA = "tb"
TABLE = "tb.perf_test"

CREATE_SCHEMA = f"CREATE SCHEMA IF NOT EXISTS {SCHEMA}"
DROP_TABLE = f"DROP TABLE IF EXISTS {TABLE}"
CREATE_TABLE = f"""
CREATE TABLE {TABLE} (
    id          SERIAL PRIMARY KEY,
    first_name  VARCHAR(80)  NOT NULL,
    last_name   VARCHAR(80)  NOT NULL,
    email       VARCHAR(255) NOT NULL UNIQUE,
    updated_at  TIMESTAMP DEFAULT NOW()
)
"""
INSERT_ROW = (
    f"INSERT INTO {TABLE} (first_name, last_name, email) VALUES (%s, %s, %s) RETURNING id"
)
UPDATE_ROW = f"UPDATE {TABLE} SET last_name = %s, updated_at = NOW() WHERE id = %s"
SELECT_ROW = f"SELECT * FROM {TABLE} WHERE id = %s"
DELETE_ROW = f"DELETE FROM {TABLE} WHERE id = %s"

OPERATIONS = ("insert", "update", "select", "delete")


def default_client(config: HarnessConfig) -> RelationalClient:
    return PostgresClient.from_dsn(config.postgres_dsn, max_connections=config.pool_max_size)


@dataclass
class CrudResources:
    """What each VU is handed: the shared client and its own Faker."""

    client: RelationalClient
    fake: Faker


class CrudWorkload(Workload):
    name = "crud"
    description = "INSERT/UPDATE/SELECT/DELETE round trips against tb.perf_test"
    options = {
        "stages": [
            {"duration": "5s", "target": 10},
            {"duration": "20s", "target": 50},
            {"duration": "5s", "target": 0},
        ],
        "thresholds": {
            "db_insert_duration": ["p(95)<50"],
            "db_select_duration": ["avg<20"],
            "insert_success": ["rate>0.99"],
        },
    }

    def __init__(
        self,
        client_factory: Callable[[HarnessConfig], RelationalClient] = default_client,
        options: Mapping[str, Any] | None = None,
        seed: int | None = None,
    ):
        self.client_factory = client_factory
        if options is not None:
            self.options = options
        self.seed = seed
        self.client: RelationalClient | None = None

    def define_metrics(self, sink: MetricSink) -> None:
        self.durations = {op: sink.trend(f"db_{op}_duration") for op in OPERATIONS}
        self.rows = {
            "insert": sink.counter("rows_inserted"),
            "update": sink.counter("rows_updated"),
            "select": sink.counter("rows_selected"),
            "delete": sink.counter("rows_deleted"),
        }
        self.success = {op: sink.rate(f"{op}_success") for op in OPERATIONS}

    def setup(self, ctx: RunContext) -> dict[str, str]:
        self.client = self.client_factory(ctx.config)
        self._create_table()
        logger.info(f"Created table {TABLE}")
        return {"table": TABLE}

    @retry_with_backoff(max_retries=3, base_delay=1.0, retryable_exceptions=(BackendTransportError,))
    def _create_table(self) -> None:
        self.client.execute(CREATE_SCHEMA)
        self.client.execute(DROP_TABLE)
        self.client.execute(CREATE_TABLE)

    def open_vu(self, ctx: RunContext, vu: VirtualUser) -> CrudResources:
        fake = Faker()
        if self.seed is not None:
            fake.seed_instance(self.seed + vu.id)
        return CrudResources(client=self.client, fake=fake)

    def close_vu(self, ctx: RunContext, vu: VirtualUser) -> None:
        # The client is shared; it is closed in teardown
        pass

    def _timed(self, op: str, call: Callable[[], Any]) -> Any:
        start = time.perf_counter()
        try:
            return call()
        except BackendError:
            self.success[op].add(False)
            raise
        finally:
            self.durations[op].add((time.perf_counter() - start) * 1000.0)

    def iteration(self, vu: VirtualUser) -> None:
        client, fake = vu.resources.client, vu.resources.fake
        email = f"{uuid.uuid4().hex[:12]}.{fake.email()}"

        rows = self._timed(
            "insert",
            lambda: client.query(INSERT_ROW, (fake.first_name(), fake.last_name(), email)),
        )
        row_id = rows[0]["id"] if rows else None
        if row_id is None:
            self.success["insert"].add(False)
            vu.log.error("Failed to insert record")
            return
        self.rows["insert"].add(1)
        self.success["insert"].add(True)

        updated = self._timed("update", lambda: client.execute(UPDATE_ROW, (fake.last_name(), row_id)))
        self.rows["update"].add(updated)
        self.success["update"].add(updated == 1)

        selected = self._timed("select", lambda: client.query(SELECT_ROW, (row_id,)))
        self.rows["select"].add(len(selected))
        self.success["select"].add(len(selected) == 1)

        deleted = self._timed("delete", lambda: client.execute(DELETE_ROW, (row_id,)))
        self.rows["delete"].add(deleted)
        self.success["delete"].add(deleted == 1)

        vu.check(deleted, {"crud_round_ok": lambda n: n == 1})

    def teardown(self, ctx: RunContext, data: Any) -> None:
        if self.client is None:
            return
        try:
            self.client.execute(DROP_TABLE)
            logger.info(f"Dropped table {TABLE}")
        finally:
            self.client.close()

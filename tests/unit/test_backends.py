"""
Unit tests for the backend clients

Tests verify:
- PostgresClient maps psycopg2 and pool failures onto the typed errors
- Statement timeouts are applied per call and reset afterwards
- KafkaRestClient encodes records, fails over between proxy addresses
  and keeps consumer instances sticky to their node
- REST proxy error codes for existing/missing topics are not failures
"""

import base64
from unittest.mock import MagicMock, Mock

import psycopg2
import psycopg2.errors
import psycopg2.extras
import pytest
import requests

from loadtest.backends import (
    BackendProtocolError,
    BackendTimeout,
    BackendTransportError,
    KafkaRestClient,
    KafkaRestError,
    Message,
    PostgresClient,
)
from loadtest.backends.kafka_rest import normalize_address
from utils.db_pool import PoolClosedError, PoolExhaustedError


# ============================================================================
# PostgreSQL
# ============================================================================

@pytest.fixture
def pg():
    """PostgresClient over a mock pool; yields (client, pool, cursor)."""
    cursor = MagicMock()
    cursor.rowcount = 1
    conn = MagicMock()
    conn.closed = False
    conn.cursor.return_value.__enter__.return_value = cursor
    pool = MagicMock()
    pool.closed = False
    pool.acquire.return_value.__enter__.return_value = conn
    return PostgresClient(pool), pool, cursor


class TestPostgresClient:
    """Test statement execution and error mapping"""

    def test_execute_returns_rowcount(self, pg):
        """Test that execute returns the affected row count."""
        client, pool, cursor = pg
        cursor.rowcount = 3

        assert client.execute("UPDATE users SET x = %s", ("y",)) == 3
        cursor.execute.assert_called_once_with("UPDATE users SET x = %s", ("y",))
        pool.acquire.assert_called_once_with(timeout=None)

    def test_execute_negative_rowcount(self, pg):
        """Test that DDL (rowcount -1) reports zero rows."""
        client, _, cursor = pg
        cursor.rowcount = -1

        assert client.execute("CREATE TABLE t (id int)") == 0

    def test_query_returns_dicts(self, pg):
        """Test that query rows come back as plain dicts."""
        client, pool, cursor = pg
        cursor.fetchall.return_value = [{"id": 7, "email": "a@example.com"}]

        rows = client.query("SELECT * FROM users WHERE id = %s", (7,))

        assert rows == [{"id": 7, "email": "a@example.com"}]
        conn = pool.acquire.return_value.__enter__.return_value
        conn.cursor.assert_called_once_with(cursor_factory=psycopg2.extras.RealDictCursor)

    def test_statement_timeout_is_set_and_reset(self, pg):
        """Test that a per-call timeout never leaks into the next call."""
        client, pool, cursor = pg

        client.execute("DELETE FROM users WHERE id = %s", (1,), timeout=0.5)

        statements = [c.args[0] for c in cursor.execute.call_args_list]
        assert statements == [
            "SET statement_timeout = %s",
            "DELETE FROM users WHERE id = %s",
            "RESET statement_timeout",
        ]
        assert cursor.execute.call_args_list[0].args[1] == (500,)
        pool.acquire.assert_called_once_with(timeout=0.5)

    @pytest.mark.parametrize("error,expected", [
        (psycopg2.errors.QueryCanceled("canceling statement"), BackendTimeout),
        (psycopg2.OperationalError("server closed the connection"), BackendTransportError),
        (psycopg2.InterfaceError("connection already closed"), BackendTransportError),
        (psycopg2.ProgrammingError('relation "users" does not exist'), BackendProtocolError),
        (psycopg2.IntegrityError("duplicate key"), BackendProtocolError),
    ])
    def test_driver_errors_are_typed(self, pg, error, expected):
        """Test that driver exceptions surface as backend error kinds."""
        client, _, cursor = pg
        cursor.execute.side_effect = error

        with pytest.raises(expected) as excinfo:
            client.query("SELECT 1")

        assert excinfo.value.operation == "query"
        assert excinfo.value.__cause__ is error

    @pytest.mark.parametrize("error,expected", [
        (PoolExhaustedError("No connection available within 1s"), BackendTimeout),
        (PoolClosedError("Connection pool is closed"), BackendTransportError),
    ])
    def test_pool_errors_are_typed(self, pg, error, expected):
        """Test that pool failures surface as backend error kinds."""
        client, pool, _ = pg
        pool.acquire.side_effect = error

        with pytest.raises(expected):
            client.execute("SELECT 1")

    def test_close_only_closes_owned_pool(self, pg):
        """Test that a borrowed pool is left open."""
        _, pool, _ = pg

        PostgresClient(pool, owns_pool=False).close()
        pool.close.assert_not_called()

        with PostgresClient(pool):
            pass
        pool.close.assert_called_once()


# ============================================================================
# Kafka REST proxy
# ============================================================================

def response(status=200, body=None):
    resp = Mock()
    resp.status_code = status
    resp.json.return_value = body if body is not None else {}
    resp.text = str(body)
    return resp


def b64(text):
    return base64.b64encode(text.encode()).decode()


@pytest.fixture
def session():
    return Mock(spec=requests.Session)


def make_client(session, addresses=("localhost:8082",), **kwargs):
    return KafkaRestClient(list(addresses), "orders", session=session, **kwargs)


class TestKafkaRestProduce:
    """Test producing through the REST proxy"""

    def test_normalize_address(self):
        assert normalize_address("localhost:8082") == "http://localhost:8082"
        assert normalize_address("https://proxy:443/") == "https://proxy:443"

    def test_requires_addresses(self, session):
        with pytest.raises(ValueError):
            KafkaRestClient([], "orders", session=session)

    def test_produce_encodes_records(self, session):
        """Test that keys and values are sent base64 encoded."""
        session.request.return_value = response(body={"offsets": [{"partition": 0, "offset": 1}]})
        client = make_client(session)

        ok = client.produce([Message.of("k1", "hello")], timeout=2)

        assert ok is True
        args, kwargs = session.request.call_args
        assert args == ("POST", "http://localhost:8082/topics/orders")
        assert kwargs["json"] == {"records": [{"key": b64("k1"), "value": b64("hello")}]}
        assert kwargs["timeout"] == 2

    def test_produce_empty_batch(self, session):
        assert make_client(session).produce([]) is True
        session.request.assert_not_called()

    def test_produce_partial_failure(self, session):
        """Test that per-record broker errors make produce return False."""
        session.request.return_value = response(body={"offsets": [
            {"partition": 0, "offset": 1},
            {"error_code": 50002, "error": "leader not available"},
        ]})

        assert make_client(session).produce([Message.of("a", "1"), Message.of("b", "2")]) is False

    def test_failover_to_next_address(self, session):
        """Test that a transport error moves produce to the next proxy."""
        session.request.side_effect = [
            requests.ConnectionError("refused"),
            response(body={"offsets": []}),
            response(body={"offsets": []}),
        ]
        client = make_client(session, addresses=("proxy-a:8082", "proxy-b:8082"))

        client.produce([Message.of("k", "v")])
        client.produce([Message.of("k", "v")])

        urls = [c.args[1] for c in session.request.call_args_list]
        assert urls == [
            "http://proxy-a:8082/topics/orders",
            "http://proxy-b:8082/topics/orders",
            "http://proxy-b:8082/topics/orders",
        ]

    def test_all_addresses_down(self, session):
        session.request.side_effect = requests.ConnectionError("refused")
        client = make_client(session, addresses=("proxy-a:8082", "proxy-b:8082"))

        with pytest.raises(BackendTransportError):
            client.produce([Message.of("k", "v")])
        assert session.request.call_count == 2

    def test_timeout_is_not_a_transport_error(self, session):
        """Test that request timeouts surface as BackendTimeout without failover."""
        session.request.side_effect = requests.ReadTimeout("read timed out")
        client = make_client(session, addresses=("proxy-a:8082", "proxy-b:8082"))

        with pytest.raises(BackendTimeout):
            client.produce([Message.of("k", "v")])
        assert session.request.call_count == 1

    def test_http_error_is_protocol_error(self, session):
        session.request.return_value = response(
            status=500, body={"error_code": 50001, "message": "broker unavailable"}
        )

        with pytest.raises(KafkaRestError, match="broker unavailable") as excinfo:
            make_client(session).produce([Message.of("k", "v")])

        assert isinstance(excinfo.value, BackendProtocolError)
        assert excinfo.value.status_code == 500
        assert excinfo.value.error_code == 50001


class TestKafkaRestConsume:
    """Test consumer instances and record buffering"""

    def consumer_replies(self, records):
        return [
            response(body={"instance_id": "inst-1"}),
            response(status=204),
            response(body=records),
        ]

    def test_requires_group(self, session):
        with pytest.raises(ValueError, match="group_id"):
            make_client(session).consume(1, timeout=0.1)

    def test_invalid_max_count(self, session):
        with pytest.raises(ValueError):
            make_client(session, group_id="g").consume(0, timeout=0.1)

    def test_consume_creates_subscribes_and_decodes(self, session):
        """Test the create/subscribe/fetch sequence and record decoding."""
        session.request.side_effect = self.consumer_replies([
            {"key": b64("k1"), "value": b64("v1"), "topic": "orders", "partition": 0, "offset": 4},
        ])
        client = make_client(session, group_id="readers")

        messages = client.consume(10, timeout=0.5)

        assert messages == [Message(b"k1", b"v1", "orders", 0, 4)]
        calls = [(c.args[0], c.args[1]) for c in session.request.call_args_list]
        assert calls == [
            ("POST", "http://localhost:8082/consumers/readers"),
            ("POST", "http://localhost:8082/consumers/readers/instances/inst-1/subscription"),
            ("GET", "http://localhost:8082/consumers/readers/instances/inst-1/records"),
        ]
        assert session.request.call_args.kwargs["params"] == {"timeout": 500}

    def test_extra_records_are_buffered(self, session):
        """Test that records beyond max_count are served from the buffer."""
        session.request.side_effect = self.consumer_replies([
            {"key": None, "value": b64(str(i))} for i in range(3)
        ])
        client = make_client(session, group_id="readers")

        first = client.consume(2, timeout=0.1)
        second = client.consume(1, timeout=0.1)

        assert [m.value for m in first] == [b"0", b"1"]
        assert [m.value for m in second] == [b"2"]
        assert session.request.call_count == 3

    def test_empty_fetch(self, session):
        session.request.side_effect = self.consumer_replies([])

        assert make_client(session, group_id="readers").consume(5, timeout=0.1) == []

    def test_expired_instance_is_recreated(self, session):
        """Test that a vanished consumer instance is rebuilt on the next call."""
        session.request.side_effect = [
            *self.consumer_replies([]),
            response(status=404, body={"error_code": 40403, "message": "Consumer instance not found"}),
            *self.consumer_replies([{"key": None, "value": b64("late")}]),
        ]
        client = make_client(session, group_id="readers")

        client.consume(1, timeout=0.1)
        with pytest.raises(KafkaRestError):
            client.consume(1, timeout=0.1)
        messages = client.consume(1, timeout=0.1)

        assert [m.value for m in messages] == [b"late"]
        assert session.request.call_count == 7

    def test_close_deletes_instance(self, session):
        session.request.side_effect = [*self.consumer_replies([]), response(status=204)]
        client = make_client(session, group_id="readers")
        client.consume(1, timeout=0.1)

        client.close()

        method, url = session.request.call_args.args
        assert method == "DELETE"
        assert url == "http://localhost:8082/consumers/readers/instances/inst-1"
        session.close.assert_not_called()

    def test_close_tolerates_failed_delete(self, session):
        session.request.side_effect = [
            *self.consumer_replies([]),
            requests.ConnectionError("proxy gone"),
        ]
        client = make_client(session, group_id="readers")
        client.consume(1, timeout=0.1)

        client.close()

    def test_failed_subscribe_deletes_instance(self, session):
        """Test that an instance whose subscription failed is not left on the proxy."""
        session.request.side_effect = [
            response(body={"instance_id": "inst-1"}),
            response(status=404, body={"error_code": 40401, "message": "Topic not found"}),
            response(status=204),
        ]
        client = make_client(session, group_id="readers")

        with pytest.raises(KafkaRestError):
            client.consume(1, timeout=0.1)

        method, url = session.request.call_args.args
        assert method == "DELETE"
        assert url == "http://localhost:8082/consumers/readers/instances/inst-1"
        assert session.request.call_count == 3

        # Nothing left to clean up on close
        client.close()
        assert session.request.call_count == 3


class TestKafkaRestAdmin:
    """Test topic administration through the v3 API"""

    CLUSTERS = {"data": [{"cluster_id": "c1"}]}

    def test_create_topic(self, session):
        session.request.side_effect = [response(body=self.CLUSTERS), response(status=201)]

        assert make_client(session).create_topic("orders", partitions=3) is True
        args, kwargs = session.request.call_args
        assert args == ("POST", "http://localhost:8082/v3/clusters/c1/topics")
        assert kwargs["json"] == {
            "topic_name": "orders", "partitions_count": 3, "replication_factor": 1,
        }

    def test_create_existing_topic(self, session):
        session.request.side_effect = [
            response(body=self.CLUSTERS),
            response(status=400, body={"error_code": 40002, "message": "Topic already exists"}),
        ]

        assert make_client(session).create_topic("orders") is False

    def test_cluster_id_is_cached(self, session):
        session.request.side_effect = [
            response(body=self.CLUSTERS), response(status=201), response(status=204),
        ]
        client = make_client(session)

        client.create_topic("orders")
        client.delete_topic("orders")

        assert session.request.call_count == 3

    def test_delete_missing_topic(self, session):
        session.request.side_effect = [
            response(body=self.CLUSTERS),
            response(status=404, body={"error_code": 40403, "message": "not found"}),
        ]

        assert make_client(session).delete_topic("orders") is False

    def test_no_clusters(self, session):
        session.request.return_value = response(body={"data": []})

        with pytest.raises(BackendProtocolError, match="no Kafka clusters"):
            make_client(session).create_topic("orders")

    def test_list_topics_sorted(self, session):
        session.request.return_value = response(body=["orders", "_schemas", "audit"])

        assert make_client(session).list_topics() == ["_schemas", "audit", "orders"]

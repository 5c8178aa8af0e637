"""
Kafka client speaking to a Kafka REST proxy.

Producing and consuming use the REST proxy v2 API (binary embedded format,
base64 on the wire); topic administration uses the v3 API. The proxy owns
the Kafka protocol, so the harness only needs ``requests``.

Consumer instances are bound to the proxy node that created them, so
consumer calls stick to that address while produce/admin calls fail over
across all configured addresses on transport errors.
"""

import base64
import logging
import threading
import uuid
from collections import deque
from collections.abc import Sequence
from typing import Any

import requests
from opentelemetry import trace

from utils.tracing import trace_operation

from .base import (
    BackendError,
    BackendProtocolError,
    BackendTimeout,
    BackendTransportError,
    Message,
    MessageBrokerClient,
)

logger = logging.getLogger(__name__)

V2_JSON = "application/vnd.kafka.v2+json"
V2_BINARY = "application/vnd.kafka.binary.v2+json"

TOPIC_ALREADY_EXISTS = 40002
CONSUMER_INSTANCE_NOT_FOUND = 40403


class KafkaRestError(BackendProtocolError):
    """Error reply from the REST proxy."""

    def __init__(self, message: str, operation: str, status_code: int, error_code: int | None):
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message, operation)


def normalize_address(address: str) -> str:
    """Turn ``host:port`` into a base URL; full URLs are kept as given."""
    address = address.strip().rstrip("/")
    if "://" not in address:
        address = f"http://{address}"
    return address


def _b64(data: bytes | None) -> str | None:
    return base64.b64encode(data).decode("ascii") if data is not None else None


def _unb64(data: str | None) -> bytes | None:
    return base64.b64decode(data) if data is not None else None


class KafkaRestClient(MessageBrokerClient):
    """
    MessageBrokerClient over the Confluent-compatible Kafka REST proxy.

    One instance per virtual user: it holds at most one consumer instance
    and a local buffer of records fetched beyond the requested batch size.
    """

    def __init__(
        self,
        addresses: Sequence[str],
        topic: str,
        group_id: str | None = None,
        request_timeout: float = 10.0,
        auto_offset_reset: str = "earliest",
        session: requests.Session | None = None,
    ):
        """
        Args:
            addresses: REST proxy addresses (host:port or URLs)
            topic: Topic used by produce() and consume()
            group_id: Consumer group; required for consume()
            request_timeout: Default per-request timeout in seconds
            auto_offset_reset: Where a new consumer group starts reading
            session: Optional requests session (shared connection pool)
        """
        if not addresses:
            raise ValueError("At least one broker address is required")
        self.addresses = [normalize_address(a) for a in addresses]
        self.topic = topic
        self.group_id = group_id
        self.request_timeout = request_timeout
        self.auto_offset_reset = auto_offset_reset
        self.session = session or requests.Session()
        self._owns_session = session is None
        self._active = 0
        self._cluster_id: str | None = None
        self._consumer: tuple[str, str] | None = None  # (address, instance path)
        self._buffer: deque[Message] = deque()
        self._lock = threading.Lock()

    # ---- HTTP plumbing -----------------------------------------------------

    def _send(
        self,
        address: str,
        method: str,
        path: str,
        operation: str,
        timeout: float | None,
        **kwargs: Any,
    ) -> requests.Response:
        try:
            response = self.session.request(
                method,
                f"{address}{path}",
                timeout=timeout if timeout is not None else self.request_timeout,
                **kwargs,
            )
        except requests.Timeout as e:
            raise BackendTimeout(f"{operation} timed out against {address}", operation) from e
        except requests.RequestException as e:
            raise BackendTransportError(f"{operation} failed against {address}: {e}", operation) from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            error_code = body.get("error_code") if isinstance(body, dict) else None
            message = body.get("message") if isinstance(body, dict) else None
            raise KafkaRestError(
                f"{operation} rejected with HTTP {response.status_code}"
                f"{f' ({error_code})' if error_code else ''}: {message or response.text[:200]}",
                operation,
                response.status_code,
                error_code,
            )
        return response

    def _request(
        self, method: str, path: str, operation: str, timeout: float | None = None, **kwargs: Any
    ) -> requests.Response:
        """Send to the active address, failing over to the next ones on transport errors."""
        last_error: BackendTransportError | None = None
        for step in range(len(self.addresses)):
            index = (self._active + step) % len(self.addresses)
            try:
                response = self._send(self.addresses[index], method, path, operation, timeout, **kwargs)
            except BackendTransportError as e:
                logger.warning(f"{e}; trying next address")
                last_error = e
                continue
            self._active = index
            return response
        raise last_error

    # ---- producing ---------------------------------------------------------

    def produce(self, messages: Sequence[Message], timeout: float | None = None) -> bool:
        if not messages:
            return True
        payload = {
            "records": [{"key": _b64(m.key), "value": _b64(m.value)} for m in messages]
        }
        with trace_operation(
            "kafka_produce", kind=trace.SpanKind.PRODUCER, topic=self.topic, batch=len(messages)
        ):
            response = self._request(
                "POST",
                f"/topics/{self.topic}",
                "produce",
                timeout,
                json=payload,
                headers={"Content-Type": V2_BINARY, "Accept": V2_JSON},
            )
        failed = [o for o in response.json().get("offsets", []) if o.get("error_code")]
        if failed:
            logger.warning(
                f"{len(failed)}/{len(messages)} messages rejected by broker: {failed[0].get('error')}"
            )
        return not failed

    # ---- consuming ---------------------------------------------------------

    def _ensure_consumer(self) -> tuple[str, str]:
        if self._consumer is not None:
            return self._consumer
        if not self.group_id:
            raise ValueError("group_id is required to consume")

        name = f"loadtest-{uuid.uuid4().hex[:12]}"
        response = self._request(
            "POST",
            f"/consumers/{self.group_id}",
            "create_consumer",
            json={
                "name": name,
                "format": "binary",
                "auto.offset.reset": self.auto_offset_reset,
                "auto.commit.enable": "true",
            },
            headers={"Content-Type": V2_JSON},
        )
        instance = f"/consumers/{self.group_id}/instances/{response.json().get('instance_id', name)}"
        address = self.addresses[self._active]
        try:
            self._send(
                address,
                "POST",
                f"{instance}/subscription",
                "subscribe",
                None,
                json={"topics": [self.topic]},
                headers={"Content-Type": V2_JSON},
            )
        except BackendError:
            # Never subscribed; the next call creates a fresh instance
            self._delete_consumer(address, instance)
            raise
        self._consumer = (address, instance)
        logger.debug(f"Created consumer {instance} on {address}")
        return self._consumer

    def consume(self, max_count: int, timeout: float) -> list[Message]:
        if max_count < 1:
            raise ValueError("max_count must be at least 1")

        with self._lock:
            if len(self._buffer) < max_count:
                address, instance = self._ensure_consumer()
                with trace_operation("kafka_consume", kind=trace.SpanKind.CONSUMER, topic=self.topic):
                    try:
                        response = self._send(
                            address,
                            "GET",
                            f"{instance}/records",
                            "consume",
                            timeout + self.request_timeout,
                            params={"timeout": int(timeout * 1000)},
                            headers={"Accept": V2_BINARY},
                        )
                    except KafkaRestError as e:
                        if e.error_code == CONSUMER_INSTANCE_NOT_FOUND:
                            # Instance expired on the proxy; recreate on the next call
                            self._consumer = None
                        raise
                    except BackendTransportError:
                        self._consumer = None
                        raise
                for record in response.json():
                    self._buffer.append(
                        Message(
                            key=_unb64(record.get("key")),
                            value=_unb64(record.get("value")),
                            topic=record.get("topic"),
                            partition=record.get("partition"),
                            offset=record.get("offset"),
                        )
                    )
            count = min(max_count, len(self._buffer))
            return [self._buffer.popleft() for _ in range(count)]

    # ---- administration ----------------------------------------------------

    def _get_cluster_id(self) -> str:
        if self._cluster_id is None:
            data = self._request("GET", "/v3/clusters", "list_clusters").json().get("data", [])
            if not data:
                raise BackendProtocolError("REST proxy reported no Kafka clusters", "list_clusters")
            self._cluster_id = data[0]["cluster_id"]
        return self._cluster_id

    def create_topic(self, name: str, partitions: int = 1, replication_factor: int = 1) -> bool:
        with trace_operation("kafka_create_topic", kind=trace.SpanKind.CLIENT, topic=name):
            try:
                self._request(
                    "POST",
                    f"/v3/clusters/{self._get_cluster_id()}/topics",
                    "create_topic",
                    json={
                        "topic_name": name,
                        "partitions_count": partitions,
                        "replication_factor": replication_factor,
                    },
                )
            except KafkaRestError as e:
                if e.error_code == TOPIC_ALREADY_EXISTS:
                    return False
                raise
        logger.info(f"Created topic '{name}' ({partitions} partitions, RF {replication_factor})")
        return True

    def delete_topic(self, name: str) -> bool:
        with trace_operation("kafka_delete_topic", kind=trace.SpanKind.CLIENT, topic=name):
            try:
                self._request(
                    "DELETE",
                    f"/v3/clusters/{self._get_cluster_id()}/topics/{name}",
                    "delete_topic",
                )
            except KafkaRestError as e:
                if e.status_code == 404:
                    return False
                raise
        logger.info(f"Deleted topic '{name}'")
        return True

    def list_topics(self) -> list[str]:
        response = self._request("GET", "/topics", "list_topics", headers={"Accept": V2_JSON})
        return sorted(response.json())

    def _delete_consumer(self, address: str, instance: str) -> None:
        try:
            self._send(
                address, "DELETE", instance, "delete_consumer", None,
                headers={"Content-Type": V2_JSON},
            )
        except BackendError as e:
            logger.warning(f"Could not delete consumer instance {instance}: {e}")

    def close(self) -> None:
        if self._consumer is not None:
            address, instance = self._consumer
            self._consumer = None
            self._delete_consumer(address, instance)
        self._buffer.clear()
        if self._owns_session:
            self.session.close()

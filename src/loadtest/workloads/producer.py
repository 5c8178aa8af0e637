"""
Kafka producer throughput.

Each iteration sends a batch of ``MESSAGES_PER_ITERATION`` JSON messages
keyed ``"{vu}-{iteration}-{i}"`` and then pauses for a second.
"""

import json
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from faker import Faker

from utils.retry import retry_with_backoff

from ..backends import (
    BackendError,
    BackendTimeout,
    BackendTransportError,
    KafkaRestClient,
    Message,
    MessageBrokerClient,
)
from ..config import HarnessConfig
from ..metrics import MetricSink
from ..scheduler import VirtualUser
from ..workload import RunContext, Workload

logger = logging.getLogger(__name__)

TOPIC_PARTITIONS = 3
TOPIC_REPLICATION_FACTOR = 1


def default_client(config: HarnessConfig) -> MessageBrokerClient:
    return KafkaRestClient(config.broker_addrs, config.topic)


@dataclass
class ProducerResources:
    client: MessageBrokerClient
    fake: Faker


def build_messages(vu_id: int, iteration: int, count: int, fake: Faker) -> list[Message]:
    messages = []
    for i in range(count):
        value = json.dumps(
            {
                "vu": vu_id,
                "iter": iteration,
                "sequence": i,
                "timestamp": datetime.now(UTC).isoformat(),
                "user": {
                    "name": fake.first_name(),
                    "email": fake.email(),
                    "address": fake.address(),
                },
            }
        )
        messages.append(Message.of(f"{vu_id}-{iteration}-{i}", value))
    return messages


class ProducerWorkload(Workload):
    name = "producer"
    description = "Batches of JSON messages produced to TOPIC through the Kafka REST proxy"
    options = {
        "scenarios": {
            "producer_scenario": {
                "executor": "ramping-vus",
                "startVUs": 0,
                "stages": [
                    {"duration": "15s", "target": 10},
                    {"duration": "60s", "target": 10},
                    {"duration": "10s", "target": 0},
                ],
                "gracefulRampDown": "10s",
            }
        },
        "thresholds": {
            "kafka_writer_write_seconds": ["p(99)<1"],
            "kafka_writer_error_count": ["count<10"],
            "kafka_produced_messages": ["count>0"],
        },
    }

    def __init__(
        self,
        client_factory: Callable[[HarnessConfig], MessageBrokerClient] = default_client,
        options: Mapping[str, Any] | None = None,
        pause: float = 1.0,
        topic_settle_seconds: float = 2.0,
    ):
        self.client_factory = client_factory
        if options is not None:
            self.options = options
        self.pause = pause
        self.topic_settle_seconds = topic_settle_seconds
        self.admin: MessageBrokerClient | None = None

    def define_metrics(self, sink: MetricSink) -> None:
        self.produced_messages = sink.counter("kafka_produced_messages")
        self.produced_bytes = sink.counter("kafka_produced_bytes")
        self.error_count = sink.counter("kafka_writer_error_count")
        self.timeout_count = sink.counter("kafka_writer_timeout_count")
        self.write_seconds = sink.trend("kafka_writer_write_seconds")

    def setup(self, ctx: RunContext) -> dict[str, str]:
        self.admin = self.client_factory(ctx.config)
        topic = ctx.config.topic
        try:
            created = self._create_topic(topic)
        except BackendError as e:
            logger.warning(f"Topic creation for '{topic}' failed (may already exist): {e}")
        else:
            if created:
                time.sleep(self.topic_settle_seconds)
            else:
                logger.info(f"Topic '{topic}' already exists")
        return {"topic": topic}

    @retry_with_backoff(max_retries=3, base_delay=1.0, retryable_exceptions=(BackendTransportError,))
    def _create_topic(self, topic: str) -> bool:
        return self.admin.create_topic(topic, TOPIC_PARTITIONS, TOPIC_REPLICATION_FACTOR)

    def open_vu(self, ctx: RunContext, vu: VirtualUser) -> ProducerResources:
        return ProducerResources(client=self.client_factory(ctx.config), fake=Faker())

    def close_vu(self, ctx: RunContext, vu: VirtualUser) -> None:
        vu.resources.client.close()

    def iteration(self, vu: VirtualUser) -> None:
        client, fake = vu.resources.client, vu.resources.fake
        messages = build_messages(vu.id, vu.iteration, vu.config.messages_per_iteration, fake)

        start = time.perf_counter()
        try:
            accepted = client.produce(messages)
        except BackendTimeout as e:
            self.timeout_count.add(1)
            accepted = False
            vu.log.warning(f"Produce timed out: {e}")
        except BackendError as e:
            self.error_count.add(1)
            accepted = False
            vu.log.error(f"VU {vu.id} failed to produce messages: {e}", error_kind=e.kind)
        else:
            if accepted:
                self.produced_messages.add(len(messages))
                self.produced_bytes.add(sum(m.size for m in messages))
            else:
                self.error_count.add(1)
        finally:
            self.write_seconds.add(time.perf_counter() - start)

        vu.check(accepted, {"messages produced successfully": bool})
        vu.sleep(self.pause)

    def teardown(self, ctx: RunContext, data: Any) -> None:
        if self.admin is None:
            return
        try:
            if ctx.config.delete_topic_on_teardown:
                self.admin.delete_topic(ctx.config.topic)
                logger.info(f"Topic '{ctx.config.topic}' deleted")
            else:
                logger.info(f"Topic '{ctx.config.topic}' preserved for consumers")
        finally:
            self.admin.close()

"""
Kafka consumer throughput.

Every VU joins consumer group ``GROUP_ID`` and reads batches of up to ten
messages. An empty read (nothing within ``CONSUME_TIMEOUT_MS``) is not an
error: the VU backs off and tries again, and after ``MAX_EMPTY_READS``
consecutive empty reads it stops. Transport and protocol failures count in
``kafka_reader_error_count`` and are retried after the error backoff.
"""

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from utils.retry import BackoffStrategy, parse_backoff

from ..backends import BackendError, BackendTimeout, KafkaRestClient, MessageBrokerClient
from ..config import HarnessConfig
from ..metrics import MetricSink
from ..scheduler import VirtualUser
from ..workload import RunContext, Workload

logger = logging.getLogger(__name__)

BATCH_SIZE = 10


def default_client(config: HarnessConfig) -> MessageBrokerClient:
    return KafkaRestClient(config.broker_addrs, config.topic, group_id=config.group_id)


@dataclass
class ConsumerResources:
    client: MessageBrokerClient
    empty_reads: int = 0
    errors: int = 0


class ConsumerWorkload(Workload):
    name = "consumer"
    description = "Batched reads from TOPIC as members of consumer group GROUP_ID"
    options = {
        "scenarios": {
            "consumer_scenario": {
                "executor": "per-vu-iterations",
                "vus": 3,
                "iterations": 100,
                "maxDuration": "2m",
            }
        },
        "thresholds": {
            "kafka_reader_read_seconds": ["p(99)<1.5"],
            "kafka_reader_error_count": {"threshold": "rate<0.01", "abortOnFail": True},
            "kafka_messages_read_count": ["count>0"],
        },
    }

    def __init__(
        self,
        client_factory: Callable[[HarnessConfig], MessageBrokerClient] = default_client,
        options: Mapping[str, Any] | None = None,
        empty_backoff: BackoffStrategy | None = None,
        error_backoff: BackoffStrategy | None = None,
    ):
        """
        Args:
            client_factory: Builds one broker client per VU
            options: Replaces the default scenario and thresholds
            empty_backoff: Wait after an empty read (default: EMPTY_READ_BACKOFF)
            error_backoff: Wait after a failed read (default: ERROR_BACKOFF)
        """
        self.client_factory = client_factory
        if options is not None:
            self.options = options
        self.empty_backoff = empty_backoff
        self.error_backoff = error_backoff

    def define_metrics(self, sink: MetricSink) -> None:
        self.messages_read = sink.counter("kafka_messages_read_count")
        self.consumed_bytes = sink.counter("kafka_consumed_bytes")
        self.read_seconds = sink.trend("kafka_reader_read_seconds")
        self.error_rate = sink.rate("kafka_reader_error_count")
        self.timeouts = sink.counter("kafka_reader_timeout_count")

    def setup(self, ctx: RunContext) -> dict[str, Any]:
        if self.empty_backoff is None:
            self.empty_backoff = parse_backoff(ctx.config.empty_read_backoff)
        if self.error_backoff is None:
            self.error_backoff = parse_backoff(ctx.config.error_backoff)
        logger.info(
            f"Consuming '{ctx.config.topic}' as group '{ctx.config.group_id}' "
            f"(empty-read backoff {self.empty_backoff!r}, error backoff {self.error_backoff!r})"
        )
        return {"topic": ctx.config.topic, "group_id": ctx.config.group_id}

    def open_vu(self, ctx: RunContext, vu: VirtualUser) -> ConsumerResources:
        return ConsumerResources(client=self.client_factory(ctx.config))

    def close_vu(self, ctx: RunContext, vu: VirtualUser) -> None:
        # Leaves the consumer group so its partitions are reassigned
        vu.resources.client.close()

    def iteration(self, vu: VirtualUser) -> None:
        res: ConsumerResources = vu.resources
        timed_out = False

        start = time.perf_counter()
        try:
            messages = res.client.consume(BATCH_SIZE, vu.config.consume_timeout)
        except BackendTimeout:
            # Wait window expired in transport; same outcome as an empty read
            messages = []
            timed_out = True
            self.timeouts.add(1)
        except BackendError as e:
            self.read_seconds.add(time.perf_counter() - start)
            self.error_rate.add(True)
            res.errors += 1
            vu.log.warning(f"Read failed ({e.kind}): {e}", error_kind=e.kind)
            vu.sleep(self.error_backoff.delay(res.errors))
            return
        self.read_seconds.add(time.perf_counter() - start)
        self.error_rate.add(False)
        res.errors = 0

        vu.check(
            messages,
            {
                "messages were consumed": lambda msgs: len(msgs) > 0,
                "consumption did not time out": lambda msgs: not timed_out,
            },
        )

        if messages:
            res.empty_reads = 0
            self.messages_read.add(len(messages))
            self.consumed_bytes.add(sum(m.size for m in messages))
            return

        res.empty_reads += 1
        if res.empty_reads >= vu.config.max_empty_reads:
            vu.log.info(f"No messages after {res.empty_reads} consecutive reads, stopping")
            vu.stop()
            return
        vu.sleep(self.empty_backoff.delay(res.empty_reads))

    def teardown(self, ctx: RunContext, data: Any) -> None:
        logger.info(
            f"Test finished. Consumed messages from topic: {ctx.config.topic} "
            f"with group ID: {ctx.config.group_id}"
        )

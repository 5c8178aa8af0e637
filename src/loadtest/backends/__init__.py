"""
Backend clients used by workloads to drive the system under test.

- RelationalClient / PostgresClient: SQL statements through a shared pool
- MessageBrokerClient / KafkaRestClient: produce, consume and topic admin
- BackendTimeout / BackendTransportError / BackendProtocolError: typed
  failures, so timeouts never count as transport errors
"""

from .base import (
    BackendError,
    BackendProtocolError,
    BackendTimeout,
    BackendTransportError,
    Message,
    MessageBrokerClient,
    RelationalClient,
)
from .kafka_rest import KafkaRestClient, KafkaRestError
from .postgres import PostgresClient

__all__ = [
    "BackendError",
    "BackendTimeout",
    "BackendTransportError",
    "BackendProtocolError",
    "Message",
    "RelationalClient",
    "MessageBrokerClient",
    "PostgresClient",
    "KafkaRestClient",
    "KafkaRestError",
]

"""
Backend client interfaces and their typed error taxonomy.

Workloads talk to the system under test only through these interfaces.
Calls are blocking and request-scoped: a timeout passed to one call never
changes the behaviour of the next. Failures are raised as one of three
BackendError subclasses so timeouts can be told apart from transport and
protocol errors without inspecting message text.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any


class BackendError(Exception):
    """Base exception for failures reported by a backend client."""

    kind = "error"

    def __init__(self, message: str, operation: str | None = None):
        self.operation = operation
        super().__init__(message)


class BackendTimeout(BackendError):
    """The request did not complete within its time budget."""

    kind = "timeout"


class BackendTransportError(BackendError):
    """The backend could not be reached or the connection broke."""

    kind = "transport"


class BackendProtocolError(BackendError):
    """The backend answered, but rejected the request or sent an unexpected reply."""

    kind = "protocol"


@dataclass(frozen=True)
class Message:
    """A broker message. Keys and values are raw bytes."""

    key: bytes | None
    value: bytes | None
    topic: str | None = None
    partition: int | None = None
    offset: int | None = None

    @property
    def size(self) -> int:
        return len(self.key or b"") + len(self.value or b"")

    @classmethod
    def of(cls, key: str | bytes | None, value: str | bytes | None) -> "Message":
        """Build a message, UTF-8 encoding text keys and values."""
        def _encode(data):
            return data.encode("utf-8") if isinstance(data, str) else data

        return cls(key=_encode(key), value=_encode(value))


Params = Sequence[Any] | Mapping[str, Any] | None


class RelationalClient(ABC):
    """Executes SQL statements against a relational database."""

    @abstractmethod
    def execute(self, statement: str, params: Params = None, timeout: float | None = None) -> int:
        """
        Run a statement that returns no rows.

        Returns:
            Number of affected rows
        """

    @abstractmethod
    def query(
        self, statement: str, params: Params = None, timeout: float | None = None
    ) -> list[dict[str, Any]]:
        """
        Run a statement that returns rows, including INSERT/UPDATE/DELETE
        with a RETURNING clause (which is how inserted keys surface).

        Returns:
            Rows as column-name mappings, in result order
        """

    def close(self) -> None:
        """Release any connections held by the client."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class MessageBrokerClient(ABC):
    """Produces to and consumes from a message broker, plus topic administration."""

    @abstractmethod
    def produce(self, messages: Sequence[Message], timeout: float | None = None) -> bool:
        """
        Send a batch of messages.

        Returns:
            True when the broker accepted every message, False when it
            reported per-message failures
        """

    @abstractmethod
    def consume(self, max_count: int, timeout: float) -> list[Message]:
        """
        Read up to max_count messages, waiting at most ``timeout`` seconds.

        An empty list means nothing arrived within the wait window; it is
        not an error. Genuine failures raise BackendError subclasses.
        """

    @abstractmethod
    def create_topic(
        self, name: str, partitions: int = 1, replication_factor: int = 1
    ) -> bool:
        """Create a topic. Returns False if it already existed."""

    @abstractmethod
    def delete_topic(self, name: str) -> bool:
        """Delete a topic. Returns False if it did not exist."""

    @abstractmethod
    def list_topics(self) -> list[str]:
        """Return the names of all topics."""

    def close(self) -> None:
        """Release consumer instances and connections held by the client."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

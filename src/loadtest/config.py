"""
Run-tunable settings read from the environment.

The process environment is overlaid with ``--env K=V`` pairs from the CLI
and parsed once, before setup, into a frozen HarnessConfig. Any value that
cannot be parsed is a ConfigurationError, so a bad setting never reaches a
running test.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from utils.retry import parse_backoff

from .errors import ConfigurationError

TRUE_VALUES = ("true", "1", "yes", "on")
FALSE_VALUES = ("false", "0", "no", "off", "")


def parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean (true/false), got '{raw}'")


def parse_int(name: str, raw: str, minimum: int | None = None) -> int:
    try:
        value = int(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got '{raw}'") from None
    if minimum is not None and value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


def parse_addresses(name: str, raw: str) -> tuple[str, ...]:
    addresses = tuple(a.strip() for a in raw.split(",") if a.strip())
    if not addresses:
        raise ConfigurationError(f"{name} must list at least one host:port")
    for address in addresses:
        hostport = address.split("://", 1)[-1]
        host, sep, port = hostport.rpartition(":")
        if not sep or not host or not port.rstrip("/").isdigit():
            raise ConfigurationError(f"{name} entry '{address}' is not host:port")
    return addresses


def parse_backoff_spec(name: str, raw: str) -> str:
    try:
        parse_backoff(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name}: {e}") from None
    return raw.strip().lower()


def parse_env_pairs(pairs: list[str] | None) -> dict[str, str]:
    """Parse ``K=V`` strings from the command line."""
    result: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ConfigurationError(f"--env expects KEY=VALUE, got '{pair}'")
        result[key.strip()] = value
    return result


@dataclass(frozen=True)
class HarnessConfig:
    """Backend endpoints and workload tunables."""

    broker_addrs: tuple[str, ...] = ("localhost:8082",)
    topic: str = "my-test-topic"
    group_id: str = "loadtest-consumer-group"
    consume_timeout_ms: int = 5000
    max_empty_reads: int = 5
    delete_topic_on_teardown: bool = False
    messages_per_iteration: int = 10
    postgres_dsn: str = "postgresql://sa:sa@localhost:5432/testdb"
    pool_max_size: int = 50
    empty_read_backoff: str = "fixed:1"
    error_backoff: str = "none"
    env: Mapping[str, str] = field(default_factory=dict, repr=False, compare=False)

    @property
    def consume_timeout(self) -> float:
        """Consume wait window in seconds."""
        return self.consume_timeout_ms / 1000.0

    def get(self, key: str, default: str | None = None) -> str | None:
        """Raw access to any variable, for workload-specific settings."""
        return self.env.get(key, default)

    @classmethod
    def from_env(
        cls,
        overrides: Mapping[str, str] | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> "HarnessConfig":
        """
        Build a config from ``environ`` (default: os.environ) overlaid with
        ``overrides``.

        Raises:
            ConfigurationError: If any recognised variable is malformed
        """
        env: dict[str, Any] = dict(os.environ if environ is None else environ)
        env.update(overrides or {})
        defaults = cls()

        def raw(key: str, default: Any) -> str:
            return env[key] if key in env else str(default)

        topic = raw("TOPIC", defaults.topic).strip()
        if not topic:
            raise ConfigurationError("TOPIC must not be empty")
        group_id = raw("GROUP_ID", defaults.group_id).strip()
        if not group_id:
            raise ConfigurationError("GROUP_ID must not be empty")

        return cls(
            broker_addrs=parse_addresses(
                "BROKER_ADDRS", raw("BROKER_ADDRS", ",".join(defaults.broker_addrs))
            ),
            topic=topic,
            group_id=group_id,
            consume_timeout_ms=parse_int(
                "CONSUME_TIMEOUT_MS", raw("CONSUME_TIMEOUT_MS", defaults.consume_timeout_ms), 1
            ),
            max_empty_reads=parse_int(
                "MAX_EMPTY_READS", raw("MAX_EMPTY_READS", defaults.max_empty_reads), 1
            ),
            delete_topic_on_teardown=parse_bool(
                "DELETE_TOPIC_ON_TEARDOWN",
                raw("DELETE_TOPIC_ON_TEARDOWN", str(defaults.delete_topic_on_teardown)),
            ),
            messages_per_iteration=parse_int(
                "MESSAGES_PER_ITERATION",
                raw("MESSAGES_PER_ITERATION", defaults.messages_per_iteration),
                1,
            ),
            postgres_dsn=raw("POSTGRES_DSN", defaults.postgres_dsn),
            pool_max_size=parse_int("POOL_MAX_SIZE", raw("POOL_MAX_SIZE", defaults.pool_max_size), 1),
            empty_read_backoff=parse_backoff_spec(
                "EMPTY_READ_BACKOFF", raw("EMPTY_READ_BACKOFF", defaults.empty_read_backoff)
            ),
            error_backoff=parse_backoff_spec(
                "ERROR_BACKOFF", raw("ERROR_BACKOFF", defaults.error_backoff)
            ),
            env=env,
        )

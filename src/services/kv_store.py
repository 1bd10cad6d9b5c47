"""Key-value store contract and its redis-py implementation.

Locks, budget counters, the durable task-context note, the end-signal
mailbox, and conversation liveness markers all live in Redis. Pulse code
depends on the ``KeyValueStore`` protocol so tests can substitute an
in-memory double.
"""

from __future__ import annotations

from typing import Mapping, Protocol

from redis import Redis

from config import RedisConfig


class KeyValueStore(Protocol):
    """Protocol for the key-value operations the scheduler issues."""

    def set_value(self, *, key: str, value: str, ttl_seconds: int | None) -> None:
        """Set one value with optional TTL in seconds."""

    def set_if_absent(self, *, key: str, value: str, ttl_seconds: int) -> bool:
        """Atomically set a value only when the key is missing."""

    def get_value(self, *, key: str) -> str | None:
        """Get one value by key or ``None`` when missing."""

    def delete_value(self, *, key: str) -> bool:
        """Delete one key and return whether a value was removed."""

    def expire(self, *, key: str, ttl_seconds: int) -> bool:
        """Reset a key's TTL and return whether the key exists."""

    def get_hash(self, *, key: str) -> dict[str, str]:
        """Return all fields of a hash (empty when missing)."""

    def get_hash_field(self, *, key: str, field: str) -> str | None:
        """Return one hash field or ``None`` when missing."""

    def increment_fields(
        self, *, key: str, increments: Mapping[str, int], ttl_seconds: int
    ) -> None:
        """Atomically increment hash fields and reset the key TTL."""

    def scan_keys(self, *, pattern: str) -> list[str]:
        """Return all keys matching a glob pattern."""


def create_redis_client(config: RedisConfig) -> Redis:
    """Construct a Redis client with the configured timeouts and pool size."""
    return Redis.from_url(
        url=config.url,
        socket_connect_timeout=config.connect_timeout_seconds,
        socket_timeout=config.socket_timeout_seconds,
        max_connections=config.max_connections,
        decode_responses=True,
        encoding="utf-8",
    )


class RedisKeyValueStore:
    """Concrete key-value store using redis-py client operations."""

    def __init__(self, *, config: RedisConfig) -> None:
        self._client = create_redis_client(config)

    def set_value(self, *, key: str, value: str, ttl_seconds: int | None) -> None:
        """Set one value with optional TTL in seconds."""
        if ttl_seconds is None:
            self._client.set(name=key, value=value)
            return
        self._client.set(name=key, value=value, ex=ttl_seconds)

    def set_if_absent(self, *, key: str, value: str, ttl_seconds: int) -> bool:
        """Set ``key`` with NX + EX in one command."""
        return bool(self._client.set(name=key, value=value, nx=True, ex=ttl_seconds))

    def get_value(self, *, key: str) -> str | None:
        """Read one value by key."""
        value = self._client.get(name=key)
        if value is None:
            return None
        return str(value)

    def delete_value(self, *, key: str) -> bool:
        """Delete one key and return whether a value existed."""
        return bool(self._client.delete(key))

    def expire(self, *, key: str, ttl_seconds: int) -> bool:
        """Reset the TTL on an existing key."""
        return bool(self._client.expire(name=key, time=ttl_seconds))

    def get_hash(self, *, key: str) -> dict[str, str]:
        """Read every field of a hash."""
        return {str(k): str(v) for k, v in self._client.hgetall(name=key).items()}

    def get_hash_field(self, *, key: str, field: str) -> str | None:
        """Read one hash field."""
        value = self._client.hget(name=key, key=field)
        if value is None:
            return None
        return str(value)

    def increment_fields(
        self, *, key: str, increments: Mapping[str, int], ttl_seconds: int
    ) -> None:
        """Run HINCRBY per field plus EXPIRE inside one MULTI/EXEC."""
        pipeline = self._client.pipeline(transaction=True)
        for field, amount in increments.items():
            pipeline.hincrby(name=key, key=field, amount=amount)
        pipeline.expire(name=key, time=ttl_seconds)
        pipeline.execute()

    def scan_keys(self, *, pattern: str) -> list[str]:
        """Collect keys matching ``pattern`` with incremental SCAN."""
        return [str(key) for key in self._client.scan_iter(match=pattern, count=100)]

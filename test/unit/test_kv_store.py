"""Unit tests for the redis-py key-value store wrapper."""

from __future__ import annotations

import fnmatch
from dataclasses import dataclass, field

import pytest

import services.kv_store as kv_store_module
from config import RedisConfig
from services.kv_store import RedisKeyValueStore


@dataclass
class _FakePipeline:
    """Buffers commands and applies them on ``execute``."""

    client: "_FakeRedisClient"
    commands: list[tuple[str, tuple]] = field(default_factory=list)

    def hincrby(self, name: str, key: str, amount: int = 1) -> "_FakePipeline":
        self.commands.append(("hincrby", (name, key, amount)))
        return self

    def expire(self, name: str, time: int) -> "_FakePipeline":
        self.commands.append(("expire", (name, time)))
        return self

    def execute(self) -> list[object]:
        self.client.transactions += 1
        return [getattr(self.client, cmd)(*args) for cmd, args in self.commands]


@dataclass
class _FakeRedisClient:
    """In-memory fake implementing Redis operations used by the store wrapper."""

    values: dict[str, str] = field(default_factory=dict)
    hashes: dict[str, dict[str, str]] = field(default_factory=dict)
    ttls: dict[str, int] = field(default_factory=dict)
    transactions: int = 0

    def set(
        self,
        name: str,
        value: str,
        ex: int | None = None,
        nx: bool = False,
    ) -> bool | None:
        if nx and name in self.values:
            return None
        self.values[name] = value
        if ex is not None:
            self.ttls[name] = ex
        return True

    def get(self, name: str) -> str | None:
        return self.values.get(name)

    def delete(self, name: str) -> int:
        removed = 0
        if name in self.values:
            del self.values[name]
            removed = 1
        if name in self.hashes:
            del self.hashes[name]
            removed = 1
        return removed

    def expire(self, name: str, time: int) -> bool:
        if name not in self.values and name not in self.hashes:
            return False
        self.ttls[name] = time
        return True

    def hgetall(self, name: str) -> dict[str, str]:
        return dict(self.hashes.get(name, {}))

    def hget(self, name: str, key: str) -> str | None:
        return self.hashes.get(name, {}).get(key)

    def hincrby(self, name: str, key: str, amount: int = 1) -> int:
        bucket = self.hashes.setdefault(name, {})
        bucket[key] = str(int(bucket.get(key, "0")) + amount)
        return int(bucket[key])

    def pipeline(self, transaction: bool = True) -> _FakePipeline:
        assert transaction
        return _FakePipeline(client=self)

    def scan_iter(self, match: str, count: int = 10):
        del count
        for key in list(self.values) + list(self.hashes):
            if fnmatch.fnmatchcase(key, match):
                yield key


@pytest.fixture
def fake_client(monkeypatch: pytest.MonkeyPatch) -> _FakeRedisClient:
    client = _FakeRedisClient()
    monkeypatch.setattr(kv_store_module, "create_redis_client", lambda config: client)
    return client


def test_set_if_absent_is_exclusive(fake_client: _FakeRedisClient) -> None:
    """Only the first NX set should succeed and it should carry the TTL."""
    store = RedisKeyValueStore(config=RedisConfig())

    assert store.set_if_absent(key="lock", value="1", ttl_seconds=900) is True
    assert store.set_if_absent(key="lock", value="2", ttl_seconds=900) is False
    assert store.get_value(key="lock") == "1"
    assert fake_client.ttls["lock"] == 900


def test_increment_fields_runs_in_one_transaction(fake_client: _FakeRedisClient) -> None:
    """Counters and expiry should be applied together."""
    store = RedisKeyValueStore(config=RedisConfig())

    store.increment_fields(key="budget", increments={"wakes": 1, "tokens": 250}, ttl_seconds=60)
    store.increment_fields(key="budget", increments={"wakes": 1}, ttl_seconds=60)

    assert store.get_hash(key="budget") == {"wakes": "2", "tokens": "250"}
    assert fake_client.transactions == 2
    assert fake_client.ttls["budget"] == 60


def test_expire_reports_missing_keys(fake_client: _FakeRedisClient) -> None:
    """Refreshing a TTL on a missing key should return False."""
    store = RedisKeyValueStore(config=RedisConfig())

    assert store.expire(key="missing", ttl_seconds=10) is False
    store.set_value(key="present", value="x", ttl_seconds=None)
    assert store.expire(key="present", ttl_seconds=10) is True


def test_scan_keys_matches_glob(fake_client: _FakeRedisClient) -> None:
    """Scan should return only keys matching the glob pattern."""
    fake_client.hashes["ns:e1:u1:expression"] = {"lastInteractionTimestamp": "x"}
    fake_client.hashes["ns:e2:u1:expression"] = {}
    store = RedisKeyValueStore(config=RedisConfig())

    assert store.scan_keys(pattern="ns:e1:*:expression") == ["ns:e1:u1:expression"]
    assert store.get_hash_field(key="ns:e1:u1:expression", field="lastInteractionTimestamp") == "x"



def test_create_redis_client_applies_timeouts(monkeypatch: pytest.MonkeyPatch) -> None:
    """The client is built from the configured URL, timeouts, and pool size."""
    captured: dict[str, object] = {}

    def fake_from_url(**kwargs):
        captured.update(kwargs)
        return object()

    monkeypatch.setattr(kv_store_module.Redis, "from_url", fake_from_url)
    config = RedisConfig(
        url="redis://cache:6379/3",
        connect_timeout_seconds=2.0,
        socket_timeout_seconds=3.0,
        max_connections=7,
    )

    kv_store_module.create_redis_client(config)

    assert captured["url"] == "redis://cache:6379/3"
    assert captured["socket_connect_timeout"] == 2.0
    assert captured["socket_timeout"] == 3.0
    assert captured["max_connections"] == 7
    assert captured["decode_responses"] is True

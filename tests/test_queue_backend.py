from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from app.queue_backend import (
    InMemoryQueueBackend,
    RedisQueueBackend,
    SqliteQueueBackend,
    create_queue_from_env,
)


def test_queue_keeps_queues_separate():
    q = InMemoryQueueBackend()
    q.enqueue(queue_name="contract.created", payload={"contract_id": "ct_a"})
    q.enqueue(queue_name="contract.events", payload={"contract_id": "ct_b"})

    msg = q.dequeue(queue_name="contract.created")
    assert msg is not None
    assert msg.payload["contract_id"] == "ct_a"
    assert q.dequeue(queue_name="contract.created") is None
    assert q.pending_count(queue_name="contract.events") == 1


def test_queue_nack_requeues_with_attempt_increment():
    q = InMemoryQueueBackend()
    enqueued = q.enqueue(queue_name="contract.created", payload={"contract_id": "ct_1"})
    msg = q.dequeue(queue_name="contract.created")
    assert msg is not None
    assert msg.message_id == enqueued.message_id

    nack = q.nack(message_id=msg.message_id, requeue=True)
    assert nack is not None
    assert nack.attempt == 1
    replay = q.dequeue(queue_name="contract.created")
    assert replay is not None
    assert replay.attempt == 1


def test_queue_skips_messages_not_yet_due():
    q = InMemoryQueueBackend()
    q.enqueue(
        queue_name="contract.created",
        payload={"contract_id": "ct_later"},
        available_at=datetime.now(UTC) + timedelta(minutes=5),
    )
    assert q.dequeue(queue_name="contract.created") is None
    assert q.pending_count(queue_name="contract.created") == 1


def test_sqlite_queue_persists_between_instances(tmp_path: Path):
    db_path = tmp_path / "queue.sqlite3"
    SqliteQueueBackend(db_path).enqueue(queue_name="contract.created", payload={"contract_id": "ct_1"})

    reopened = SqliteQueueBackend(db_path)
    msg = reopened.dequeue(queue_name="contract.created")
    assert msg is not None
    assert msg.payload == {"contract_id": "ct_1"}
    reopened.ack(message_id=msg.message_id)
    assert reopened.pending_count(queue_name="contract.created") == 0


class FakeRedis:
    def __init__(self):
        self.kv: dict[str, str] = {}
        self.lists: dict[str, list[str]] = {}
        self.sets: dict[str, set[str]] = {}

    def get(self, key):
        return self.kv.get(key)

    def set(self, key, value):
        self.kv[key] = value

    def delete(self, *keys):
        for key in keys:
            self.kv.pop(key, None)
            self.lists.pop(key, None)
            self.sets.pop(key, None)

    def rpush(self, key, value):
        self.lists.setdefault(key, []).append(value)

    def lpush(self, key, value):
        self.lists.setdefault(key, []).insert(0, value)

    def lpop(self, key):
        items = self.lists.get(key) or []
        return items.pop(0) if items else None

    def llen(self, key):
        return len(self.lists.get(key) or [])

    def sadd(self, key, value):
        self.sets.setdefault(key, set()).add(value)

    def srem(self, key, value):
        self.sets.get(key, set()).discard(value)

    def scan_iter(self, match):
        prefix = match.rstrip("*")
        return [k for k in [*self.kv, *self.lists, *self.sets] if k.startswith(prefix)]


def test_redis_queue_round_trip_uses_namespace():
    client = FakeRedis()
    q = RedisQueueBackend(dsn="", namespace="cre", client=client)
    q.enqueue(queue_name="contract.created", payload={"contract_id": "ct_1"})
    assert "cre:queue:contract.created:pending" in client.lists

    msg = q.dequeue(queue_name="contract.created")
    assert msg is not None
    assert msg.payload["contract_id"] == "ct_1"
    nacked = q.nack(message_id=msg.message_id, requeue=False)
    assert nacked is not None
    assert nacked.attempt == 1
    assert q.pending_count(queue_name="contract.created") == 0


def test_queue_factory_defaults_to_memory():
    assert isinstance(create_queue_from_env({}), InMemoryQueueBackend)


def test_queue_factory_builds_sqlite(tmp_path: Path):
    q = create_queue_from_env({"CRE_QUEUE_BACKEND": "sqlite", "CRE_QUEUE_SQLITE_PATH": str(tmp_path / "q.db")})
    assert isinstance(q, SqliteQueueBackend)


def test_queue_factory_requires_redis_dsn():
    with pytest.raises(ValueError, match="REDIS_DSN"):
        create_queue_from_env({"CRE_QUEUE_BACKEND": "redis"})


def test_queue_factory_rejects_unknown_backend():
    with pytest.raises(RuntimeError, match="unsupported queue backend"):
        create_queue_from_env({"CRE_QUEUE_BACKEND": "kafka"})

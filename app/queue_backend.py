from __future__ import annotations

import json
import os
import sqlite3
import threading
import uuid
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

CONTRACT_CREATED_QUEUE = "contract.created"
CONTRACT_EVENTS_QUEUE = "contract.events"


@dataclass
class QueueMessage:
    message_id: str
    queue_name: str
    payload: dict[str, Any]
    attempt: int = 0
    available_at: str | None = None


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


def _is_due(available_at: str | None) -> bool:
    if not available_at:
        return True
    try:
        dt = datetime.fromisoformat(available_at)
    except ValueError:
        return True
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt <= datetime.now(UTC)


def _new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex[:12]}"


class InMemoryQueueBackend:
    """Process-local queue used by default and in tests."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._queues: dict[str, deque[QueueMessage]] = {}
        self._inflight: dict[str, QueueMessage] = {}

    def enqueue(
        self,
        *,
        queue_name: str,
        payload: dict[str, Any],
        available_at: datetime | None = None,
    ) -> QueueMessage:
        with self._lock:
            msg = QueueMessage(
                message_id=_new_message_id(),
                queue_name=queue_name,
                payload=payload,
                attempt=int(payload.get("attempt", 0)),
                available_at=(
                    available_at.astimezone(UTC).isoformat()
                    if isinstance(available_at, datetime)
                    else _utcnow_iso()
                ),
            )
            self._queues.setdefault(queue_name, deque()).append(msg)
            return msg

    def dequeue(self, *, queue_name: str) -> QueueMessage | None:
        with self._lock:
            queue = self._queues.setdefault(queue_name, deque())
            for _ in range(len(queue)):
                msg = queue.popleft()
                if _is_due(msg.available_at):
                    self._inflight[msg.message_id] = msg
                    return msg
                queue.append(msg)
            return None

    def ack(self, *, message_id: str) -> None:
        with self._lock:
            self._inflight.pop(message_id, None)

    def nack(self, *, message_id: str, requeue: bool = True, delay_ms: int = 0) -> QueueMessage | None:
        with self._lock:
            msg = self._inflight.pop(message_id, None)
            if msg is None:
                return None
            msg.attempt += 1
            if requeue:
                due_at = datetime.now(UTC) + timedelta(milliseconds=max(0, int(delay_ms)))
                msg.available_at = due_at.isoformat()
                self._queues.setdefault(msg.queue_name, deque()).appendleft(msg)
            return msg

    def pending_count(self, *, queue_name: str) -> int:
        with self._lock:
            return len(self._queues.get(queue_name, deque()))

    def reset(self) -> None:
        with self._lock:
            self._queues.clear()
            self._inflight.clear()


class SqliteQueueBackend:
    """SQLite-backed queue used for local persistence and replay tests."""

    def __init__(self, db_path: str | Path) -> None:
        self._lock = threading.RLock()
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS queue_messages (
                    message_id TEXT PRIMARY KEY,
                    queue_name TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    attempt INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL,
                    available_at TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_queue_messages_lookup
                ON queue_messages(queue_name, status, created_at)
                """
            )
            conn.commit()

    @staticmethod
    def _row_to_message(row: sqlite3.Row) -> QueueMessage:
        return QueueMessage(
            message_id=row["message_id"],
            queue_name=row["queue_name"],
            payload=json.loads(row["payload"]),
            attempt=row["attempt"],
            available_at=row["available_at"],
        )

    def enqueue(
        self,
        *,
        queue_name: str,
        payload: dict[str, Any],
        available_at: datetime | None = None,
    ) -> QueueMessage:
        with self._lock:
            now = _utcnow_iso()
            msg = QueueMessage(
                message_id=_new_message_id(),
                queue_name=queue_name,
                payload=payload,
                attempt=int(payload.get("attempt", 0)),
                available_at=available_at.astimezone(UTC).isoformat() if isinstance(available_at, datetime) else now,
            )
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO queue_messages(
                        message_id, queue_name, payload, attempt, status, available_at, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, 'pending', ?, ?, ?)
                    """,
                    (
                        msg.message_id,
                        msg.queue_name,
                        json.dumps(msg.payload, ensure_ascii=True, sort_keys=True),
                        msg.attempt,
                        msg.available_at,
                        now,
                        now,
                    ),
                )
                conn.commit()
            return msg

    def dequeue(self, *, queue_name: str) -> QueueMessage | None:
        with self._lock:
            with self._connect() as conn:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    """
                    SELECT message_id, queue_name, payload, attempt, available_at
                    FROM queue_messages
                    WHERE queue_name = ? AND status = 'pending' AND available_at <= ?
                    ORDER BY created_at ASC, message_id ASC
                    LIMIT 1
                    """,
                    (queue_name, _utcnow_iso()),
                ).fetchone()
                if row is None:
                    conn.commit()
                    return None
                conn.execute(
                    "UPDATE queue_messages SET status = 'inflight', updated_at = ? WHERE message_id = ?",
                    (_utcnow_iso(), row["message_id"]),
                )
                conn.commit()
                return self._row_to_message(row)

    def ack(self, *, message_id: str) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    "DELETE FROM queue_messages WHERE message_id = ? AND status = 'inflight'",
                    (message_id,),
                )
                conn.commit()

    def nack(self, *, message_id: str, requeue: bool = True, delay_ms: int = 0) -> QueueMessage | None:
        with self._lock:
            with self._connect() as conn:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    """
                    SELECT message_id, queue_name, payload, attempt, available_at
                    FROM queue_messages
                    WHERE message_id = ? AND status = 'inflight'
                    LIMIT 1
                    """,
                    (message_id,),
                ).fetchone()
                if row is None:
                    conn.commit()
                    return None
                next_attempt = int(row["attempt"]) + 1
                status = "pending" if requeue else "discarded"
                due_at = datetime.now(UTC) + timedelta(milliseconds=max(0, int(delay_ms)))
                available_at = due_at.isoformat() if requeue else row["available_at"]
                conn.execute(
                    """
                    UPDATE queue_messages
                    SET attempt = ?, status = ?, available_at = ?, updated_at = ?
                    WHERE message_id = ?
                    """,
                    (next_attempt, status, available_at, _utcnow_iso(), message_id),
                )
                conn.commit()
                msg = self._row_to_message(row)
                msg.attempt = next_attempt
                msg.available_at = available_at
                return msg

    def pending_count(self, *, queue_name: str) -> int:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT COUNT(1) AS cnt FROM queue_messages WHERE queue_name = ? AND status = 'pending'",
                    (queue_name,),
                ).fetchone()
                return int(row["cnt"]) if row is not None else 0

    def reset(self) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute("DELETE FROM queue_messages")
                conn.commit()


def _import_redis() -> Any:
    try:
        import redis  # type: ignore
    except ImportError as exc:
        raise RuntimeError("redis is required for CRE_QUEUE_BACKEND=redis; install redis>=5") from exc
    return redis


class RedisQueueBackend:
    """Redis-backed queue: a pending list per queue plus one json blob per message."""

    def __init__(self, *, dsn: str, namespace: str = "cre", client: Any | None = None) -> None:
        if client is None and not dsn.strip():
            raise ValueError("REDIS_DSN must be provided for redis queue backend")
        self._namespace = namespace.strip() or "cre"
        self._lock = threading.RLock()
        if client is None:
            redis = _import_redis()
            client = redis.Redis.from_url(dsn.strip(), decode_responses=True)
        self._client = client

    def _pending_key(self, queue_name: str) -> str:
        return f"{self._namespace}:queue:{queue_name}:pending"

    def _inflight_key(self, queue_name: str) -> str:
        return f"{self._namespace}:queue:{queue_name}:inflight"

    def _msg_key(self, message_id: str) -> str:
        return f"{self._namespace}:msg:{message_id}"

    def _load_msg(self, message_id: str) -> dict[str, Any] | None:
        raw = self._client.get(self._msg_key(message_id))
        if not isinstance(raw, str) or not raw:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return None
        return data if isinstance(data, dict) else None

    def _save_msg(self, message_id: str, data: dict[str, Any]) -> None:
        self._client.set(
            self._msg_key(message_id),
            json.dumps(data, sort_keys=True, ensure_ascii=True, separators=(",", ":")),
        )

    @staticmethod
    def _to_message(message_id: str, data: dict[str, Any]) -> QueueMessage:
        return QueueMessage(
            message_id=message_id,
            queue_name=str(data.get("queue_name", "")),
            payload=data.get("payload", {}),
            attempt=int(data.get("attempt", 0)),
            available_at=str(data.get("available_at", "")) or None,
        )

    def enqueue(
        self,
        *,
        queue_name: str,
        payload: dict[str, Any],
        available_at: datetime | None = None,
    ) -> QueueMessage:
        with self._lock:
            message_id = _new_message_id()
            data = {
                "queue_name": queue_name,
                "payload": payload,
                "attempt": int(payload.get("attempt", 0)),
                "status": "pending",
                "available_at": (
                    available_at.astimezone(UTC).isoformat() if isinstance(available_at, datetime) else _utcnow_iso()
                ),
            }
            self._save_msg(message_id, data)
            self._client.rpush(self._pending_key(queue_name), message_id)
            return self._to_message(message_id, data)

    def dequeue(self, *, queue_name: str) -> QueueMessage | None:
        with self._lock:
            pending_key = self._pending_key(queue_name)
            for _ in range(int(self._client.llen(pending_key))):
                message_id = self._client.lpop(pending_key)
                if not isinstance(message_id, str) or not message_id:
                    return None
                data = self._load_msg(message_id)
                if data is None:
                    continue
                if not _is_due(data.get("available_at")):
                    self._client.rpush(pending_key, message_id)
                    continue
                data["status"] = "inflight"
                self._save_msg(message_id, data)
                self._client.sadd(self._inflight_key(queue_name), message_id)
                return self._to_message(message_id, data)
            return None

    def ack(self, *, message_id: str) -> None:
        with self._lock:
            data = self._load_msg(message_id)
            if data is None or data.get("status") != "inflight":
                return
            self._client.srem(self._inflight_key(str(data.get("queue_name", ""))), message_id)
            self._client.delete(self._msg_key(message_id))

    def nack(self, *, message_id: str, requeue: bool = True, delay_ms: int = 0) -> QueueMessage | None:
        with self._lock:
            data = self._load_msg(message_id)
            if data is None or data.get("status") != "inflight":
                return None
            queue_name = str(data.get("queue_name", ""))
            data["attempt"] = int(data.get("attempt", 0)) + 1
            self._client.srem(self._inflight_key(queue_name), message_id)
            if requeue:
                data["status"] = "pending"
                due_at = datetime.now(UTC) + timedelta(milliseconds=max(0, int(delay_ms)))
                data["available_at"] = due_at.isoformat()
                self._save_msg(message_id, data)
                self._client.lpush(self._pending_key(queue_name), message_id)
            else:
                data["status"] = "discarded"
                self._save_msg(message_id, data)
            return self._to_message(message_id, data)

    def pending_count(self, *, queue_name: str) -> int:
        with self._lock:
            return int(self._client.llen(self._pending_key(queue_name)))

    def reset(self) -> None:
        with self._lock:
            keys = list(self._client.scan_iter(match=f"{self._namespace}:*"))
            if keys:
                self._client.delete(*keys)


def create_queue_from_env(
    environ: Mapping[str, str] | None = None,
) -> InMemoryQueueBackend | SqliteQueueBackend | RedisQueueBackend:
    env = os.environ if environ is None else environ
    backend = env.get("CRE_QUEUE_BACKEND", "memory").strip().lower()
    if backend == "memory":
        return InMemoryQueueBackend()
    if backend == "sqlite":
        return SqliteQueueBackend(env.get("CRE_QUEUE_SQLITE_PATH", ".runtime/cre_queue.sqlite3"))
    if backend == "redis":
        dsn = env.get("REDIS_DSN", "").strip()
        if not dsn:
            raise ValueError("REDIS_DSN must be set when CRE_QUEUE_BACKEND=redis")
        return RedisQueueBackend(dsn=dsn, namespace=env.get("CRE_QUEUE_KEY_PREFIX", "cre"))
    raise RuntimeError(f"unsupported queue backend: {backend}")

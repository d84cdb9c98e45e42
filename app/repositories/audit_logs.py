from __future__ import annotations

import json
import threading
from collections.abc import Callable
from datetime import datetime
from typing import Any

from app.codecs import transition_codec
from app.db.postgres import PostgresTxRunner, validate_identifier
from app.models import Transition, TransitionKind


def _occurred_at(row: dict[str, Any]) -> datetime | None:
    raw = row.get("occurred_at")
    if not raw:
        return None
    return raw if isinstance(raw, datetime) else datetime.fromisoformat(str(raw))


class InMemoryAuditLogsRepository:
    def __init__(self, audit_logs: list[dict[str, Any]]) -> None:
        self._audit_logs = audit_logs
        self._lock = threading.RLock()

    def clear(self) -> None:
        with self._lock:
            self._audit_logs.clear()

    def append(self, *, log: dict[str, Any]) -> dict[str, Any]:
        item = dict(log)
        with self._lock:
            self._audit_logs.append(item)
        return dict(item)

    def append_chained(self, *, build: Callable[[dict[str, Any] | None], dict[str, Any]]) -> dict[str, Any]:
        with self._lock:
            return self.append(log=build(self.last()))

    def last(self) -> dict[str, Any] | None:
        with self._lock:
            if not self._audit_logs:
                return None
            return dict(self._audit_logs[-1])

    def list_for_contract(self, *, contract_id: str) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(x) for x in self._audit_logs if x.get("contract_id") == contract_id]

    def list_for_run(self, *, run_id: str) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(x) for x in self._audit_logs if x.get("run_id") == run_id]

    def list_for_actor(self, *, actor_id: str) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(x) for x in self._audit_logs if x.get("actor_id") == actor_id]

    def list_between(self, *, start: datetime, end: datetime) -> list[dict[str, Any]]:
        with self._lock:
            rows = [dict(x) for x in self._audit_logs]
        out: list[dict[str, Any]] = []
        for row in rows:
            occurred_at = _occurred_at(row)
            if occurred_at is not None and start <= occurred_at <= end:
                out.append(row)
        return out

    def count_between(self, *, start: datetime, end: datetime) -> int:
        return len(self.list_between(start=start, end=end))

    def list_all(self) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(x) for x in self._audit_logs]


class PostgresAuditLogsRepository:
    """Append-only audit table; rows are never updated, conflicting ids are ignored."""

    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "extraction_audit_logs") -> None:
        self._tx_runner = tx_runner
        self._table_name = validate_identifier(table_name)

    def _insert(self, cur: Any, item: dict[str, Any]) -> None:
        transition = transition_codec.encode(
            Transition(kind=TransitionKind(str(item["action"])), detail=item.get("detail"))
        )
        sql = f"""
            INSERT INTO {self._table_name} (
                audit_id, run_id, contract_id, action, transition, actor_id,
                occurred_at, duration_ms, prev_hash, audit_hash, payload
            ) VALUES (%s, %s, %s, %s, %s::jsonb, %s, %s, %s, %s, %s, %s::jsonb)
            ON CONFLICT(audit_id) DO NOTHING
        """
        cur.execute(
            sql,
            (
                item["audit_id"],
                item["run_id"],
                item["contract_id"],
                item["action"],
                transition.decode("utf-8"),
                item.get("actor_id"),
                item.get("occurred_at"),
                item.get("duration_ms"),
                item.get("prev_hash", ""),
                item.get("audit_hash", ""),
                json.dumps(item, ensure_ascii=True, sort_keys=True),
            ),
        )

    def append(self, *, log: dict[str, Any]) -> dict[str, Any]:
        item = dict(log)

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                self._insert(cur, item)
            return item

        return self._tx_runner.run_in_tx(fn=_op)

    def append_chained(self, *, build: Callable[[dict[str, Any] | None], dict[str, Any]]) -> dict[str, Any]:
        """Read the chain head and insert the next entry in one transaction.

        The transaction-scoped advisory lock serializes writers across processes
        until commit, so no two entries can share a ``prev_hash``.
        """
        last_sql = f"SELECT payload FROM {self._table_name} ORDER BY seq DESC LIMIT 1"

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (self._table_name,))
                cur.execute(last_sql)
                row = cur.fetchone()
                last = row[0] if row and isinstance(row[0], dict) else None
                item = dict(build(last))
                self._insert(cur, item)
            return item

        return self._tx_runner.run_in_tx(fn=_op)

    def _select_payloads(self, *, where: str, params: tuple[Any, ...], order: str, limit: str = "") -> list[dict[str, Any]]:
        sql = f"""
            SELECT payload
            FROM {self._table_name}
            {where}
            ORDER BY {order}
            {limit}
        """

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                rows = cur.fetchall() or []
            out: list[dict[str, Any]] = []
            for row in rows:
                payload = row[0]
                if isinstance(payload, dict):
                    out.append(payload)
            return out

        return self._tx_runner.run_in_tx(fn=_op)

    def last(self) -> dict[str, Any] | None:
        rows = self._select_payloads(where="", params=(), order="seq DESC", limit="LIMIT 1")
        return rows[0] if rows else None

    def list_for_contract(self, *, contract_id: str) -> list[dict[str, Any]]:
        return self._select_payloads(
            where="WHERE contract_id = %s",
            params=(contract_id,),
            order="occurred_at ASC, seq ASC",
        )

    def list_for_run(self, *, run_id: str) -> list[dict[str, Any]]:
        return self._select_payloads(
            where="WHERE run_id = %s",
            params=(run_id,),
            order="occurred_at ASC, seq ASC",
        )

    def list_for_actor(self, *, actor_id: str) -> list[dict[str, Any]]:
        return self._select_payloads(
            where="WHERE actor_id = %s",
            params=(actor_id,),
            order="occurred_at ASC, seq ASC",
        )

    def list_between(self, *, start: datetime, end: datetime) -> list[dict[str, Any]]:
        return self._select_payloads(
            where="WHERE occurred_at >= %s AND occurred_at <= %s",
            params=(start, end),
            order="occurred_at ASC, seq ASC",
        )

    def count_between(self, *, start: datetime, end: datetime) -> int:
        sql = f"SELECT COUNT(*) FROM {self._table_name} WHERE occurred_at >= %s AND occurred_at <= %s"

        def _op(conn: Any) -> int:
            with conn.cursor() as cur:
                cur.execute(sql, (start, end))
                row = cur.fetchone()
            return int(row[0]) if row else 0

        return self._tx_runner.run_in_tx(fn=_op)

    def list_all(self) -> list[dict[str, Any]]:
        return self._select_payloads(where="", params=(), order="seq ASC")

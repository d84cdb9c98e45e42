from __future__ import annotations

import threading
from typing import Any

from app.codecs import string_list_codec
from app.db.postgres import PostgresTxRunner, validate_identifier
from app.models import ExtractionStatus

ACTIVE_STATUS_VALUES = tuple(s.value for s in ExtractionStatus if s.is_active)


class InMemoryExtractionRunsRepository:
    def __init__(self, runs: dict[str, dict[str, Any]]) -> None:
        self._runs = runs
        self._lock = threading.RLock()

    def clear(self) -> None:
        with self._lock:
            self._runs.clear()

    def create_if_no_active(self, *, run: dict[str, Any]) -> dict[str, Any] | None:
        """Insert ``run`` unless its contract already has an active run."""
        with self._lock:
            if self._find_active_unlocked(str(run["contract_id"])) is not None:
                return None
            self._runs[str(run["run_id"])] = dict(run)
            return dict(run)

    def update(self, *, run: dict[str, Any], expected_status: str) -> bool:
        with self._lock:
            current = self._runs.get(str(run["run_id"]))
            if current is None or current.get("status") != expected_status:
                return False
            self._runs[str(run["run_id"])] = dict(run)
            return True

    def get(self, *, run_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._runs.get(run_id)
            return None if row is None else dict(row)

    def _find_active_unlocked(self, contract_id: str) -> dict[str, Any] | None:
        for row in self._runs.values():
            if row.get("contract_id") == contract_id and row.get("status") in ACTIVE_STATUS_VALUES:
                return row
        return None

    def find_active(self, *, contract_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._find_active_unlocked(contract_id)
            return None if row is None else dict(row)

    def list_for_contract(self, *, contract_id: str) -> list[dict[str, Any]]:
        with self._lock:
            rows = [dict(x) for x in self._runs.values() if x.get("contract_id") == contract_id]
        return sorted(rows, key=lambda x: str(x.get("started_at") or ""))


class PostgresExtractionRunsRepository:
    """Runs table; the active-run check and the insert are one conditional statement."""

    _COLUMNS = (
        "run_id, contract_id, requested_by, contract_type, status, rule_snapshot, "
        "error_message, outcome_summary, started_at, completed_at"
    )

    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "extraction_runs") -> None:
        self._tx_runner = tx_runner
        self._table_name = validate_identifier(table_name)

    @staticmethod
    def _row_to_dict(row: Any) -> dict[str, Any]:
        snapshot = row[5]
        if isinstance(snapshot, (bytes, str)):
            snapshot = string_list_codec.decode(snapshot)
        return {
            "run_id": row[0],
            "contract_id": row[1],
            "requested_by": row[2],
            "contract_type": row[3],
            "status": row[4],
            "rule_snapshot": list(snapshot or []),
            "error_message": row[6],
            "outcome_summary": row[7],
            "started_at": row[8],
            "completed_at": row[9],
        }

    def create_if_no_active(self, *, run: dict[str, Any]) -> dict[str, Any] | None:
        sql = f"""
            INSERT INTO {self._table_name} ({self._COLUMNS})
            SELECT %s, %s, %s, %s, %s, %s::jsonb, %s, %s, %s, %s
            WHERE NOT EXISTS (
                SELECT 1 FROM {self._table_name}
                WHERE contract_id = %s AND status IN (%s, %s)
            )
            ON CONFLICT DO NOTHING
            RETURNING run_id
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        run["run_id"],
                        run["contract_id"],
                        run.get("requested_by", ""),
                        run.get("contract_type", ""),
                        run.get("status", "pending"),
                        string_list_codec.encode(run.get("rule_snapshot") or []).decode("utf-8"),
                        run.get("error_message"),
                        run.get("outcome_summary"),
                        run.get("started_at"),
                        run.get("completed_at"),
                        run["contract_id"],
                        *ACTIVE_STATUS_VALUES,
                    ),
                )
                inserted = cur.fetchone()
            return dict(run) if inserted is not None else None

        return self._tx_runner.run_in_tx(fn=_op)

    def update(self, *, run: dict[str, Any], expected_status: str) -> bool:
        sql = f"""
            UPDATE {self._table_name}
            SET status = %s,
                contract_type = %s,
                rule_snapshot = %s::jsonb,
                error_message = %s,
                outcome_summary = %s,
                completed_at = %s
            WHERE run_id = %s AND status = %s
        """

        def _op(conn: Any) -> bool:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        run["status"],
                        run.get("contract_type", ""),
                        string_list_codec.encode(run.get("rule_snapshot") or []).decode("utf-8"),
                        run.get("error_message"),
                        run.get("outcome_summary"),
                        run.get("completed_at"),
                        run["run_id"],
                        expected_status,
                    ),
                )
                return cur.rowcount > 0

        return self._tx_runner.run_in_tx(fn=_op)

    def _fetch(self, *, where: str, params: tuple[Any, ...], many: bool, order: str = "") -> Any:
        sql = f"SELECT {self._COLUMNS} FROM {self._table_name} {where} {order}"

        def _op(conn: Any) -> Any:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                if many:
                    return [self._row_to_dict(r) for r in cur.fetchall() or []]
                row = cur.fetchone()
            return None if row is None else self._row_to_dict(row)

        return self._tx_runner.run_in_tx(fn=_op)

    def get(self, *, run_id: str) -> dict[str, Any] | None:
        return self._fetch(where="WHERE run_id = %s", params=(run_id,), many=False, order="LIMIT 1")

    def find_active(self, *, contract_id: str) -> dict[str, Any] | None:
        return self._fetch(
            where="WHERE contract_id = %s AND status IN (%s, %s)",
            params=(contract_id, *ACTIVE_STATUS_VALUES),
            many=False,
            order="LIMIT 1",
        )

    def list_for_contract(self, *, contract_id: str) -> list[dict[str, Any]]:
        return self._fetch(
            where="WHERE contract_id = %s",
            params=(contract_id,),
            many=True,
            order="ORDER BY started_at ASC",
        )

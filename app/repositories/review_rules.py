from __future__ import annotations

import json
import threading
from typing import Any

from app.applicability import ApplicableTypes
from app.codecs import applicable_types_codec
from app.db.postgres import PostgresTxRunner, validate_identifier


class InMemoryReviewRulesRepository:
    def __init__(self, rules: dict[str, dict[str, Any]]) -> None:
        self._rules = rules
        self._lock = threading.RLock()

    def clear(self) -> None:
        with self._lock:
            self._rules.clear()

    def save(self, *, rule: dict[str, Any]) -> dict[str, Any]:
        item = dict(rule)
        with self._lock:
            self._rules[str(item["rule_id"])] = item
        return dict(item)

    def get(self, *, rule_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._rules.get(rule_id)
            return None if row is None else dict(row)

    def get_by_name(self, *, name: str) -> dict[str, Any] | None:
        with self._lock:
            for row in self._rules.values():
                if row.get("name") == name:
                    return dict(row)
        return None

    def list_all(self) -> list[dict[str, Any]]:
        with self._lock:
            rows = [dict(x) for x in self._rules.values()]
        return sorted(rows, key=lambda x: str(x.get("created_at") or ""), reverse=True)

    def list_enabled_for_mode(self, *, mode_ordinal: int) -> list[dict[str, Any]]:
        return [
            x
            for x in self.list_all()
            if x.get("enabled") and int(x.get("mode_ordinal", 0)) <= mode_ordinal
        ]

    def delete(self, *, rule_id: str) -> bool:
        with self._lock:
            return self._rules.pop(rule_id, None) is not None


class PostgresReviewRulesRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "review_rules") -> None:
        self._tx_runner = tx_runner
        self._table_name = validate_identifier(table_name)

    def save(self, *, rule: dict[str, Any]) -> dict[str, Any]:
        item = dict(rule)
        contract_types = applicable_types_codec.encode(ApplicableTypes.of(item["applicable_contract_types"]))
        clause_types = applicable_types_codec.encode(ApplicableTypes.of(item["applicable_clause_types"]))
        sql = f"""
            INSERT INTO {self._table_name} (
                rule_id, name, rule_type, applicable_contract_types, applicable_clause_types,
                mode_ordinal, enabled, category, payload, created_at, updated_at
            ) VALUES (%s, %s, %s, %s::jsonb, %s::jsonb, %s, %s, %s, %s::jsonb, %s, %s)
            ON CONFLICT(rule_id) DO UPDATE SET
                name = EXCLUDED.name,
                rule_type = EXCLUDED.rule_type,
                applicable_contract_types = EXCLUDED.applicable_contract_types,
                applicable_clause_types = EXCLUDED.applicable_clause_types,
                mode_ordinal = EXCLUDED.mode_ordinal,
                enabled = EXCLUDED.enabled,
                category = EXCLUDED.category,
                payload = EXCLUDED.payload,
                updated_at = EXCLUDED.updated_at
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        item["rule_id"],
                        item["name"],
                        item["rule_type"],
                        contract_types.decode("utf-8"),
                        clause_types.decode("utf-8"),
                        int(item["mode_ordinal"]),
                        bool(item["enabled"]),
                        item.get("category"),
                        json.dumps(item, ensure_ascii=True, sort_keys=True),
                        item.get("created_at"),
                        item.get("updated_at"),
                    ),
                )
            return item

        return self._tx_runner.run_in_tx(fn=_op)

    def _select(self, *, where: str, params: tuple[Any, ...], single: bool = False) -> Any:
        sql = f"""
            SELECT payload
            FROM {self._table_name}
            {where}
            ORDER BY created_at DESC
            {"LIMIT 1" if single else ""}
        """

        def _op(conn: Any) -> Any:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                rows = cur.fetchall() or []
            out = [row[0] for row in rows if isinstance(row[0], dict)]
            if single:
                return out[0] if out else None
            return out

        return self._tx_runner.run_in_tx(fn=_op)

    def get(self, *, rule_id: str) -> dict[str, Any] | None:
        return self._select(where="WHERE rule_id = %s", params=(rule_id,), single=True)

    def get_by_name(self, *, name: str) -> dict[str, Any] | None:
        return self._select(where="WHERE name = %s", params=(name,), single=True)

    def list_all(self) -> list[dict[str, Any]]:
        return self._select(where="", params=())

    def list_enabled_for_mode(self, *, mode_ordinal: int) -> list[dict[str, Any]]:
        # Never narrowed by contract or clause type here; the selector owns that.
        return self._select(where="WHERE enabled = TRUE AND mode_ordinal <= %s", params=(int(mode_ordinal),))

    def delete(self, *, rule_id: str) -> bool:
        sql = f"DELETE FROM {self._table_name} WHERE rule_id = %s"

        def _op(conn: Any) -> bool:
            with conn.cursor() as cur:
                cur.execute(sql, (rule_id,))
                return cur.rowcount > 0

        return self._tx_runner.run_in_tx(fn=_op)

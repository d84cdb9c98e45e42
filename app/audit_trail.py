from __future__ import annotations

import dataclasses
import hashlib
import json
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Protocol

from app.errors import ApiError
from app.mappers import audit_entry_from_dict, audit_entry_to_dict
from app.models import AuditEntry

DEFAULT_QUERY_LIMIT = 100


class AuditLogsRepository(Protocol):
    def append_chained(self, *, build: Callable[[dict[str, Any] | None], dict[str, Any]]) -> dict[str, Any]: ...

    def last(self) -> dict[str, Any] | None: ...

    def list_for_contract(self, *, contract_id: str) -> list[dict[str, Any]]: ...

    def list_for_run(self, *, run_id: str) -> list[dict[str, Any]]: ...

    def list_for_actor(self, *, actor_id: str) -> list[dict[str, Any]]: ...

    def list_between(self, *, start: datetime, end: datetime) -> list[dict[str, Any]]: ...

    def count_between(self, *, start: datetime, end: datetime) -> int: ...

    def list_all(self) -> list[dict[str, Any]]: ...


def compute_audit_hash(*, log: dict[str, Any], prev_hash: str) -> str:
    material = {key: value for key, value in log.items() if key not in {"audit_hash", "prev_hash"}}
    material["prev_hash"] = prev_hash
    blob = json.dumps(material, sort_keys=True, ensure_ascii=True, separators=(",", ":"))
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


class AuditTrail:
    """Append-only sink for extraction transitions.

    Entries are chained by hash so tampering is detectable, but the trail never
    validates, reorders or repairs what it receives.
    """

    def __init__(self, repository: AuditLogsRepository) -> None:
        self._repository = repository

    def append(self, entry: AuditEntry) -> AuditEntry:
        def _chain(last: dict[str, Any] | None) -> dict[str, Any]:
            prev_hash = str(last.get("audit_hash") or "") if last else ""
            log = audit_entry_to_dict(dataclasses.replace(entry, prev_hash=prev_hash, audit_hash=""))
            log["audit_hash"] = compute_audit_hash(log=log, prev_hash=prev_hash)
            return log

        return audit_entry_from_dict(self._repository.append_chained(build=_chain))

    @staticmethod
    def _ordered(rows: list[dict[str, Any]]) -> list[AuditEntry]:
        entries = [audit_entry_from_dict(row) for row in rows]
        return sorted(entries, key=lambda e: e.occurred_at)

    def find_by_contract(self, contract_id: str) -> list[AuditEntry]:
        return self._ordered(self._repository.list_for_contract(contract_id=contract_id))

    def find_by_run(self, run_id: str) -> list[AuditEntry]:
        return self._ordered(self._repository.list_for_run(run_id=run_id))

    def latest_run_id(self, contract_id: str) -> str | None:
        entries = self.find_by_contract(contract_id)
        return entries[-1].run_id if entries else None

    @staticmethod
    def _latest(entries: list[AuditEntry], limit: int) -> list[AuditEntry]:
        if limit <= 0:
            return []
        return entries[-limit:]

    @staticmethod
    def _window(start: datetime, end: datetime) -> tuple[datetime, datetime]:
        start = start if start.tzinfo else start.replace(tzinfo=UTC)
        end = end if end.tzinfo else end.replace(tzinfo=UTC)
        if start > end:
            raise ApiError(
                code="REQ_VALIDATION_FAILED",
                message="start must not be after end",
                error_class="validation",
                retryable=False,
                http_status=400,
            )
        return start, end

    def find_by_actor(self, actor_id: str, *, limit: int = DEFAULT_QUERY_LIMIT) -> list[AuditEntry]:
        """The actor's most recent ``limit`` entries, oldest first."""
        return self._latest(self._ordered(self._repository.list_for_actor(actor_id=actor_id)), limit)

    def find_between(self, start: datetime, end: datetime, *, limit: int = DEFAULT_QUERY_LIMIT) -> list[AuditEntry]:
        """The most recent ``limit`` entries with ``start <= occurred_at <= end``, oldest first."""
        start, end = self._window(start, end)
        return self._latest(self._ordered(self._repository.list_between(start=start, end=end)), limit)

    def count_between(self, start: datetime, end: datetime) -> int:
        start, end = self._window(start, end)
        return self._repository.count_between(start=start, end=end)

    def verify_integrity(self) -> dict[str, Any]:
        prev_hash = ""
        rows = self._repository.list_all()
        for idx, row in enumerate(rows):
            stored_prev = str(row.get("prev_hash") or "")
            if stored_prev != prev_hash:
                return {
                    "valid": False,
                    "checked_count": idx + 1,
                    "reason": "prev_hash_mismatch",
                    "audit_id": row.get("audit_id"),
                }
            expected = compute_audit_hash(log=row, prev_hash=stored_prev)
            actual = str(row.get("audit_hash") or "")
            if actual != expected:
                return {
                    "valid": False,
                    "checked_count": idx + 1,
                    "reason": "audit_hash_mismatch",
                    "audit_id": row.get("audit_id"),
                }
            prev_hash = actual
        return {
            "valid": True,
            "checked_count": len(rows),
            "last_hash": prev_hash,
        }

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from app.applicability import ApplicableTypes
from app.errors import InvalidRuleDefinition
from app.models import AuditEntry, ExtractionRun, ExtractionStatus, Transition, TransitionKind
from app.review_rules import ReviewRule


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.isoformat()


def _parse_dt(raw: Any) -> datetime | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        dt = raw
    else:
        dt = datetime.fromisoformat(str(raw))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def rule_to_dict(rule: ReviewRule) -> dict[str, Any]:
    return {
        "rule_id": rule.rule_id,
        "name": rule.name,
        "rule_type": rule.rule_type.value,
        "applicable_contract_types": rule.applicable_contract_types.as_list(),
        "applicable_clause_types": rule.applicable_clause_types.as_list(),
        "content": rule.content,
        "mode": rule.mode.code,
        "mode_ordinal": rule.mode.ordinal,
        "enabled": rule.enabled,
        "remark": rule.remark,
        "category": rule.category,
        "created_at": _iso(rule.created_at),
        "updated_at": _iso(rule.updated_at),
    }


def rule_from_dict(row: dict[str, Any]) -> ReviewRule:
    created_at = _parse_dt(row.get("created_at"))
    if created_at is None:
        raise InvalidRuleDefinition("stored rule is missing created_at")
    return ReviewRule.rehydrate(
        rule_id=str(row.get("rule_id") or ""),
        name=str(row.get("name") or ""),
        rule_type=str(row.get("rule_type") or ""),
        applicable_contract_types=ApplicableTypes.of(row.get("applicable_contract_types") or []),
        applicable_clause_types=ApplicableTypes.of(row.get("applicable_clause_types") or []),
        content=str(row.get("content") or ""),
        mode=row.get("mode_ordinal", row.get("mode", "")),
        enabled=row.get("enabled"),
        created_at=created_at,
        updated_at=_parse_dt(row.get("updated_at")),
        remark=row.get("remark"),
        category=row.get("category"),
    )


def rule_fields_from_request(payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "name": str(payload.get("name") or ""),
        "rule_type": str(payload.get("rule_type") or ""),
        "applicable_contract_types": list(payload.get("applicable_contract_types") or []),
        "applicable_clause_types": list(payload.get("applicable_clause_types") or []),
        "content": str(payload.get("content") or ""),
        "mode": payload.get("mode", ""),
        "remark": payload.get("remark"),
        "category": payload.get("category"),
    }


def run_to_dict(run: ExtractionRun) -> dict[str, Any]:
    return {
        "run_id": run.run_id,
        "contract_id": run.contract_id,
        "requested_by": run.requested_by,
        "contract_type": run.contract_type,
        "status": run.status.value,
        "rule_snapshot": list(run.rule_snapshot),
        "error_message": run.error_message,
        "outcome_summary": run.outcome_summary,
        "started_at": _iso(run.started_at),
        "completed_at": _iso(run.completed_at),
        "duration_ms": run.duration_ms(),
    }


def run_from_dict(row: dict[str, Any]) -> ExtractionRun:
    started_at = _parse_dt(row.get("started_at"))
    if started_at is None:
        raise ValueError("stored run is missing started_at")
    return ExtractionRun(
        run_id=str(row["run_id"]),
        contract_id=str(row["contract_id"]),
        requested_by=str(row.get("requested_by") or ""),
        status=ExtractionStatus(str(row["status"])),
        started_at=started_at,
        contract_type=str(row.get("contract_type") or ""),
        rule_snapshot=tuple(str(x) for x in row.get("rule_snapshot") or []),
        error_message=row.get("error_message"),
        outcome_summary=row.get("outcome_summary"),
        completed_at=_parse_dt(row.get("completed_at")),
    )


def audit_entry_to_dict(entry: AuditEntry) -> dict[str, Any]:
    return {
        "audit_id": entry.audit_id,
        "run_id": entry.run_id,
        "contract_id": entry.contract_id,
        "action": entry.transition.kind.value,
        "detail": entry.transition.detail,
        "actor_id": entry.actor_id,
        "occurred_at": _iso(entry.occurred_at),
        "duration_ms": entry.duration_ms,
        "prev_hash": entry.prev_hash,
        "audit_hash": entry.audit_hash,
    }


def audit_entry_from_dict(row: dict[str, Any]) -> AuditEntry:
    occurred_at = _parse_dt(row.get("occurred_at"))
    if occurred_at is None:
        raise ValueError("stored audit entry is missing occurred_at")
    duration = row.get("duration_ms")
    return AuditEntry(
        audit_id=str(row["audit_id"]),
        run_id=str(row["run_id"]),
        contract_id=str(row["contract_id"]),
        transition=Transition(kind=TransitionKind(str(row["action"])), detail=row.get("detail")),
        actor_id=str(row.get("actor_id") or ""),
        occurred_at=occurred_at,
        duration_ms=None if duration is None else int(duration),
        prev_hash=str(row.get("prev_hash") or ""),
        audit_hash=str(row.get("audit_hash") or ""),
    )

from __future__ import annotations

import dataclasses
import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Protocol

from app.audit_trail import AuditTrail
from app.errors import AlreadyActive, ApiError, InvalidTransition, UnknownRun
from app.mappers import run_from_dict, run_to_dict
from app.models import AuditEntry, ExtractionRun, ExtractionStatus, Transition, TransitionKind
from app.review_modes import ReviewMode
from app.review_rules import ReviewRule
from app.rule_selector import RuleSelector

logger = logging.getLogger(__name__)

UNSPECIFIED_FAILURE = "unspecified extraction failure"


class ExtractionRunsRepository(Protocol):
    def create_if_no_active(self, *, run: dict[str, Any]) -> dict[str, Any] | None: ...

    def update(self, *, run: dict[str, Any], expected_status: str) -> bool: ...

    def get(self, *, run_id: str) -> dict[str, Any] | None: ...

    def find_active(self, *, contract_id: str) -> dict[str, Any] | None: ...

    def list_for_contract(self, *, contract_id: str) -> list[dict[str, Any]]: ...


class RuleCatalogSource(Protocol):
    def list_enabled_for_mode(self, mode: ReviewMode) -> list[ReviewRule]: ...


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ExtractionLifecycle:
    """State machine for extraction runs: PENDING -> IN_PROGRESS -> SUCCEEDED | FAILED."""

    ALLOWED_TRANSITIONS: dict[ExtractionStatus, set[ExtractionStatus]] = {
        ExtractionStatus.PENDING: {ExtractionStatus.IN_PROGRESS},
        ExtractionStatus.IN_PROGRESS: {ExtractionStatus.SUCCEEDED, ExtractionStatus.FAILED},
        ExtractionStatus.SUCCEEDED: set(),
        ExtractionStatus.FAILED: set(),
    }

    def __init__(
        self,
        *,
        runs_repository: ExtractionRunsRepository,
        catalog_source: RuleCatalogSource,
        audit_trail: AuditTrail,
        selector: RuleSelector | None = None,
        default_mode: ReviewMode = ReviewMode.STANDARD,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._runs = runs_repository
        self._catalog_source = catalog_source
        self._audit_trail = audit_trail
        self._selector = selector or RuleSelector()
        self._default_mode = default_mode
        self._clock = clock

    @staticmethod
    def _new_run_id() -> str:
        return f"run_{uuid.uuid4().hex[:12]}"

    @staticmethod
    def _new_audit_id() -> str:
        return f"audit_{uuid.uuid4().hex[:12]}"

    def _record(self, run: ExtractionRun, kind: TransitionKind, *, actor_id: str, detail: str | None = None) -> None:
        entry = AuditEntry(
            audit_id=self._new_audit_id(),
            run_id=run.run_id,
            contract_id=run.contract_id,
            transition=Transition(kind=kind, detail=detail),
            actor_id=actor_id,
            occurred_at=run.completed_at if kind.is_terminal and run.completed_at else self._clock(),
            duration_ms=run.duration_ms() if kind.is_terminal else None,
        )
        try:
            self._audit_trail.append(entry)
        except Exception as exc:
            # Audit writes never abort a transition that already happened.
            logger.warning(
                "audit_append_failed run_id=%s kind=%s error=%s",
                run.run_id,
                kind.value,
                exc,
            )

    def _load(self, run_id: str) -> ExtractionRun:
        row = self._runs.get(run_id=run_id)
        if row is None:
            raise UnknownRun(run_id)
        return run_from_dict(row)

    def _transition(self, run: ExtractionRun, target: ExtractionStatus, **changes: Any) -> ExtractionRun:
        if target not in self.ALLOWED_TRANSITIONS[run.status]:
            raise InvalidTransition(f"invalid transition: {run.status.value} -> {target.value}")
        updated = dataclasses.replace(run, status=target, **changes)
        if not self._runs.update(run=run_to_dict(updated), expected_status=run.status.value):
            raise InvalidTransition(f"run {run.run_id} changed concurrently; expected {run.status.value}")
        return updated

    def trigger(self, contract_id: str, requested_by: str, *, contract_type: str = "") -> ExtractionRun:
        contract_id = str(contract_id or "").strip()
        if not contract_id:
            raise ApiError(
                code="REQ_VALIDATION_FAILED",
                message="contract_id is required",
                error_class="validation",
                retryable=False,
                http_status=400,
            )
        run = ExtractionRun(
            run_id=self._new_run_id(),
            contract_id=contract_id,
            requested_by=str(requested_by or ""),
            status=ExtractionStatus.PENDING,
            started_at=self._clock(),
            contract_type=str(contract_type or "").strip(),
        )
        if self._runs.create_if_no_active(run=run_to_dict(run)) is None:
            active = self._runs.find_active(contract_id=contract_id)
            raise AlreadyActive(contract_id, run_id=str(active["run_id"]) if active else None)
        logger.info("extraction_triggered run_id=%s contract_id=%s", run.run_id, contract_id)
        self._record(run, TransitionKind.STARTED, actor_id=run.requested_by)
        return run

    def begin(
        self,
        run_id: str,
        *,
        clause_type: str,
        mode: ReviewMode | None = None,
        contract_type: str | None = None,
    ) -> ExtractionRun:
        """Move a run to IN_PROGRESS and freeze the rules that govern it."""
        run = self._load(run_id)
        if ExtractionStatus.IN_PROGRESS not in self.ALLOWED_TRANSITIONS[run.status]:
            raise InvalidTransition(f"invalid transition: {run.status.value} -> {ExtractionStatus.IN_PROGRESS.value}")
        query_mode = mode or self._default_mode
        effective_contract_type = (contract_type if contract_type is not None else run.contract_type).strip()
        catalog = self._catalog_source.list_enabled_for_mode(query_mode)
        rules = self._selector.select(catalog, effective_contract_type, clause_type.strip(), query_mode)
        snapshot = tuple(str(r.rule_id) for r in rules if r.rule_id is not None)
        updated = self._transition(
            run,
            ExtractionStatus.IN_PROGRESS,
            contract_type=effective_contract_type,
            rule_snapshot=snapshot,
        )
        logger.info(
            "extraction_begun run_id=%s mode=%s rules=%d",
            run_id,
            query_mode.code,
            len(snapshot),
        )
        return updated

    def complete(self, run_id: str, outcome_summary: str | None = None, *, actor_id: str | None = None) -> ExtractionRun:
        run = self._load(run_id)
        updated = self._transition(
            run,
            ExtractionStatus.SUCCEEDED,
            outcome_summary=outcome_summary,
            completed_at=self._clock(),
        )
        logger.info("extraction_succeeded run_id=%s duration_ms=%s", run_id, updated.duration_ms())
        self._record(
            updated,
            TransitionKind.SUCCEEDED,
            actor_id=actor_id or updated.requested_by,
            detail=outcome_summary,
        )
        return updated

    def fail(self, run_id: str, error_message: str, *, actor_id: str | None = None) -> ExtractionRun:
        run = self._load(run_id)
        message = str(error_message or "").strip() or UNSPECIFIED_FAILURE
        updated = self._transition(
            run,
            ExtractionStatus.FAILED,
            error_message=message,
            completed_at=self._clock(),
        )
        logger.info("extraction_failed run_id=%s error=%s", run_id, message)
        self._record(
            updated,
            TransitionKind.FAILED,
            actor_id=actor_id or updated.requested_by,
            detail=message,
        )
        return updated

    def abandon(self, run_id: str, error_message: str, *, actor_id: str | None = None) -> ExtractionRun:
        """Drive a run that can no longer make progress to FAILED.

        A PENDING run is first moved to IN_PROGRESS with an empty rule snapshot
        so the only path to FAILED is still a legal one. Terminal runs are
        returned unchanged.
        """
        run = self._load(run_id)
        if run.status.is_terminal:
            return run
        if run.status is ExtractionStatus.PENDING:
            self._transition(run, ExtractionStatus.IN_PROGRESS, rule_snapshot=())
            logger.warning("extraction_begin_abandoned run_id=%s", run_id)
        return self.fail(run_id, error_message, actor_id=actor_id)

    def get_run(self, run_id: str) -> ExtractionRun:
        return self._load(run_id)

    def active_run_for(self, contract_id: str) -> ExtractionRun | None:
        row = self._runs.find_active(contract_id=contract_id)
        return None if row is None else run_from_dict(row)

    def runs_for_contract(self, contract_id: str) -> list[ExtractionRun]:
        return [run_from_dict(row) for row in self._runs.list_for_contract(contract_id=contract_id)]

    def rule_snapshot(self, run_id: str) -> tuple[str, ...]:
        return self._load(run_id).rule_snapshot

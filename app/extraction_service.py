from __future__ import annotations

import logging
from typing import Protocol

from app.contract_events import ContractCreatedEvent
from app.errors import AlreadyActive
from app.extraction_lifecycle import ExtractionLifecycle
from app.models import ExtractionRun
from app.review_modes import ReviewMode

logger = logging.getLogger(__name__)


class ClauseExtractor(Protocol):
    def extract(self, *, run: ExtractionRun, event: ContractCreatedEvent) -> str | None: ...


class NoopClauseExtractor:
    """Extractor used when no real backend is wired; reports the frozen rule count."""

    def extract(self, *, run: ExtractionRun, event: ContractCreatedEvent) -> str | None:
        return f"{len(run.rule_snapshot)} rules applied"


class ExtractionService:
    """Drives a full extraction run from a contract.created notification."""

    def __init__(
        self,
        *,
        lifecycle: ExtractionLifecycle,
        extractor: ClauseExtractor | None = None,
        clause_type: str = "general",
        mode: ReviewMode | None = None,
    ) -> None:
        self._lifecycle = lifecycle
        self._extractor = extractor or NoopClauseExtractor()
        self._clause_type = clause_type
        self._mode = mode

    def handle_contract_created(self, event: ContractCreatedEvent) -> ExtractionRun | None:
        if not event.has_attachment:
            logger.warning("contract_created_skipped contract_id=%s reason=no_attachment", event.contract_id)
            return None
        try:
            run = self._lifecycle.trigger(
                event.contract_id,
                event.requested_by,
                contract_type=event.contract_type,
            )
        except AlreadyActive as exc:
            logger.warning(
                "contract_created_skipped contract_id=%s reason=already_active run_id=%s",
                event.contract_id,
                exc.run_id,
            )
            return None

        # Past this point every failure must leave the run terminal.
        run_id = run.run_id
        try:
            run = self._lifecycle.begin(run_id, clause_type=self._clause_type, mode=self._mode)
        except Exception as exc:
            logger.exception("rule_selection_failed run_id=%s", run_id)
            return self._lifecycle.abandon(run_id, f"rule selection failed: {exc}")
        try:
            summary = self._extractor.extract(run=run, event=event)
        except Exception as exc:
            logger.exception("clause_extraction_failed run_id=%s", run_id)
            return self._lifecycle.abandon(run_id, str(exc))
        try:
            return self._lifecycle.complete(run_id, summary)
        except Exception as exc:
            logger.exception("extraction_complete_failed run_id=%s", run_id)
            return self._lifecycle.abandon(run_id, f"completion failed: {exc}")

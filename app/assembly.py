from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from app.audit_trail import AuditTrail
from app.contract_events import ContractEventPublisher
from app.db.postgres import PostgresTxRunner
from app.extraction_lifecycle import ExtractionLifecycle
from app.extraction_service import ClauseExtractor, ExtractionService
from app.queue_backend import InMemoryQueueBackend, create_queue_from_env
from app.repositories import (
    InMemoryAuditLogsRepository,
    InMemoryExtractionRunsRepository,
    InMemoryReviewRulesRepository,
    PostgresAuditLogsRepository,
    PostgresExtractionRunsRepository,
    PostgresReviewRulesRepository,
)
from app.rule_selector import RuleSelector
from app.rule_service import ReviewRuleService
from app.settings import EngineSettings, true_stack_required

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    """Explicitly wired services; one instance per process or per test."""

    settings: EngineSettings
    rules: ReviewRuleService
    audit_trail: AuditTrail
    lifecycle: ExtractionLifecycle
    extraction: ExtractionService
    publisher: ContractEventPublisher
    queue_backend: Any
    repositories: tuple[Any, ...] = ()

    def reset(self) -> None:
        for repo in self.repositories:
            clear = getattr(repo, "clear", None)
            if callable(clear):
                clear()
        reset_queue = getattr(self.queue_backend, "reset", None)
        if callable(reset_queue):
            reset_queue()


def _build_repositories(settings: EngineSettings) -> tuple[Any, Any, Any]:
    if settings.require_true_stack and settings.store_backend != "postgres":
        raise RuntimeError("CRE_STORE_BACKEND must be postgres when CRE_REQUIRE_TRUESTACK=true")
    if settings.store_backend == "postgres":
        if not settings.postgres_dsn:
            raise ValueError("POSTGRES_DSN must be set when CRE_STORE_BACKEND=postgres")
        tx_runner = PostgresTxRunner(settings.postgres_dsn)
        return (
            PostgresReviewRulesRepository(tx_runner=tx_runner),
            PostgresExtractionRunsRepository(tx_runner=tx_runner),
            PostgresAuditLogsRepository(tx_runner=tx_runner),
        )
    if settings.store_backend != "memory":
        raise RuntimeError(f"unsupported store backend: {settings.store_backend}")
    return (
        InMemoryReviewRulesRepository({}),
        InMemoryExtractionRunsRepository({}),
        InMemoryAuditLogsRepository([]),
    )


def create_queue_backend_for_runtime(environ: Mapping[str, str] | None = None) -> Any:
    env = os.environ if environ is None else environ
    try:
        return create_queue_from_env(env)
    except RuntimeError:
        if true_stack_required(env):
            raise
        logger.warning("queue_backend_fallback backend=memory")
        return InMemoryQueueBackend()


def build_engine(
    settings: EngineSettings | None = None,
    *,
    queue_backend: Any | None = None,
    extractor: ClauseExtractor | None = None,
    environ: Mapping[str, str] | None = None,
) -> Engine:
    settings = settings or EngineSettings.from_env(environ)
    rules_repo, runs_repo, audit_repo = _build_repositories(settings)
    if queue_backend is None:
        queue_backend = create_queue_backend_for_runtime(environ)
    selector = RuleSelector()
    rules = ReviewRuleService(repository=rules_repo, selector=selector)
    audit_trail = AuditTrail(audit_repo)
    lifecycle = ExtractionLifecycle(
        runs_repository=runs_repo,
        catalog_source=rules,
        audit_trail=audit_trail,
        selector=selector,
        default_mode=settings.default_mode,
    )
    extraction = ExtractionService(
        lifecycle=lifecycle,
        extractor=extractor,
        clause_type=settings.default_clause_type,
        mode=settings.default_mode,
    )
    logger.info(
        "engine_built store_backend=%s queue_backend=%s default_mode=%s",
        settings.store_backend,
        type(queue_backend).__name__,
        settings.default_mode.code,
    )
    return Engine(
        settings=settings,
        rules=rules,
        audit_trail=audit_trail,
        lifecycle=lifecycle,
        extraction=extraction,
        publisher=ContractEventPublisher(queue_backend=queue_backend),
        queue_backend=queue_backend,
        repositories=(rules_repo, runs_repo, audit_repo),
    )

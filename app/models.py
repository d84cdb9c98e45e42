from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class ExtractionStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {ExtractionStatus.SUCCEEDED, ExtractionStatus.FAILED}

    @property
    def is_active(self) -> bool:
        return not self.is_terminal


@dataclass
class ExtractionRun:
    run_id: str
    contract_id: str
    requested_by: str
    status: ExtractionStatus
    started_at: datetime
    contract_type: str = ""
    rule_snapshot: tuple[str, ...] = ()
    error_message: str | None = None
    outcome_summary: str | None = None
    completed_at: datetime | None = None

    def duration_ms(self) -> int | None:
        if self.completed_at is None:
            return None
        return max(0, int((self.completed_at - self.started_at).total_seconds() * 1000))


class TransitionKind(Enum):
    STARTED = "started"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not TransitionKind.STARTED


@dataclass(frozen=True)
class Transition:
    kind: TransitionKind
    detail: str | None = None


@dataclass(frozen=True)
class AuditEntry:
    audit_id: str
    run_id: str
    contract_id: str
    transition: Transition
    actor_id: str
    occurred_at: datetime
    duration_ms: int | None = None
    prev_hash: str = ""
    audit_hash: str = ""

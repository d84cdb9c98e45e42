from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from app.applicability import FALLBACK_MARKER, SENTINELS, ApplicableTypes
from app.errors import InvalidRuleDefinition
from app.review_modes import ReviewMode, strictest

RULE_NAME_MAX_LENGTH = 255


class RuleType(Enum):
    SPECIFIC = "specific"
    FALLBACK = "fallback"
    EXTENDED = "extended"

    @classmethod
    def from_code(cls, raw: "RuleType | str") -> "RuleType":
        if isinstance(raw, RuleType):
            return raw
        text = str(raw).strip().lower()
        for item in cls:
            if item.value == text:
                return item
        raise ValueError(f"unknown rule type: {raw!r}")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _validate(rule: "ReviewRule") -> None:
    if not rule.name.strip():
        raise InvalidRuleDefinition("rule name must not be blank")
    if len(rule.name) > RULE_NAME_MAX_LENGTH:
        raise InvalidRuleDefinition(f"rule name must be at most {RULE_NAME_MAX_LENGTH} characters")
    if not rule.content.strip():
        raise InvalidRuleDefinition("rule content must not be blank")

    contract_types = rule.applicable_contract_types
    clause_types = rule.applicable_clause_types
    if contract_types.is_empty:
        raise InvalidRuleDefinition("applicable contract types must not be empty")
    if clause_types.is_empty:
        raise InvalidRuleDefinition("applicable clause types must not be empty")
    for declared, label in ((contract_types, "contract"), (clause_types, "clause")):
        if declared.concrete_values and len(declared.values) != len(declared.concrete_values):
            raise InvalidRuleDefinition(f"{label} type sentinels cannot be mixed with concrete types")
        if len(set(declared.values) & SENTINELS) > 1:
            raise InvalidRuleDefinition(f"{label} types declare more than one sentinel")
    if clause_types.is_fallback:
        raise InvalidRuleDefinition(f"clause types cannot carry the {FALLBACK_MARKER} marker")

    if rule.rule_type is RuleType.EXTENDED and rule.mode is not strictest():
        raise InvalidRuleDefinition(f"extended rules must use the {strictest().code} mode")
    if rule.rule_type is RuleType.FALLBACK and not contract_types.is_fallback:
        raise InvalidRuleDefinition(f"fallback rules must declare the {FALLBACK_MARKER} contract type marker")
    if rule.rule_type is not RuleType.FALLBACK and contract_types.is_fallback:
        raise InvalidRuleDefinition(f"only fallback rules may declare the {FALLBACK_MARKER} contract type marker")


@dataclass
class ReviewRule:
    """Review rule aggregate. Mutate only through ``update``/``enable``/``disable``."""

    rule_id: str | None
    name: str
    rule_type: RuleType
    applicable_contract_types: ApplicableTypes
    applicable_clause_types: ApplicableTypes
    content: str
    mode: ReviewMode
    enabled: bool
    remark: str | None
    created_at: datetime
    updated_at: datetime
    category: str | None = None

    @classmethod
    def create(
        cls,
        *,
        name: str,
        rule_type: RuleType | str,
        applicable_contract_types: ApplicableTypes | Iterable[str],
        applicable_clause_types: ApplicableTypes | Iterable[str],
        content: str,
        mode: ReviewMode | int | str,
        remark: str | None = None,
        category: str | None = None,
    ) -> "ReviewRule":
        now = _utcnow()
        rule = cls(
            rule_id=None,
            name=str(name or ""),
            rule_type=_coerce_rule_type(rule_type),
            applicable_contract_types=ApplicableTypes.of(applicable_contract_types),
            applicable_clause_types=ApplicableTypes.of(applicable_clause_types),
            content=str(content or ""),
            mode=_coerce_mode(mode),
            enabled=True,
            remark=remark,
            created_at=now,
            updated_at=now,
            category=_normalize_category(category),
        )
        _validate(rule)
        return rule

    @classmethod
    def rehydrate(
        cls,
        *,
        rule_id: str,
        name: str,
        rule_type: RuleType | str,
        applicable_contract_types: ApplicableTypes | Iterable[str],
        applicable_clause_types: ApplicableTypes | Iterable[str],
        content: str,
        mode: ReviewMode | int | str,
        enabled: bool | None,
        created_at: datetime,
        updated_at: datetime | None = None,
        remark: str | None = None,
        category: str | None = None,
    ) -> "ReviewRule":
        if not str(rule_id or "").strip():
            raise InvalidRuleDefinition("stored rule is missing its id")
        rule = cls(
            rule_id=str(rule_id),
            name=str(name or ""),
            rule_type=_coerce_rule_type(rule_type),
            applicable_contract_types=ApplicableTypes.of(applicable_contract_types),
            applicable_clause_types=ApplicableTypes.of(applicable_clause_types),
            content=str(content or ""),
            mode=_coerce_mode(mode),
            enabled=True if enabled is None else bool(enabled),
            remark=remark,
            created_at=created_at,
            updated_at=updated_at or created_at,
            category=_normalize_category(category),
        )
        _validate(rule)
        return rule

    def _apply(self, **changes: Any) -> None:
        candidate = dataclasses.replace(self, **changes, updated_at=_utcnow())
        _validate(candidate)
        for field in dataclasses.fields(self):
            setattr(self, field.name, getattr(candidate, field.name))

    def update(
        self,
        *,
        name: str,
        rule_type: RuleType | str,
        applicable_contract_types: ApplicableTypes | Iterable[str],
        applicable_clause_types: ApplicableTypes | Iterable[str],
        content: str,
        mode: ReviewMode | int | str,
        remark: str | None = None,
        category: str | None = None,
    ) -> None:
        self._apply(
            name=str(name or ""),
            rule_type=_coerce_rule_type(rule_type),
            applicable_contract_types=ApplicableTypes.of(applicable_contract_types),
            applicable_clause_types=ApplicableTypes.of(applicable_clause_types),
            content=str(content or ""),
            mode=_coerce_mode(mode),
            remark=remark,
            category=_normalize_category(category),
        )

    def enable(self) -> None:
        self._apply(enabled=True)

    def disable(self) -> None:
        self._apply(enabled=False)

    def with_id(self, rule_id: str) -> "ReviewRule":
        if self.rule_id is not None and self.rule_id != rule_id:
            raise InvalidRuleDefinition("rule id is already assigned")
        return dataclasses.replace(self, rule_id=rule_id)


def _coerce_rule_type(raw: RuleType | str) -> RuleType:
    try:
        return RuleType.from_code(raw)
    except ValueError as exc:
        raise InvalidRuleDefinition(str(exc)) from None


def _coerce_mode(raw: ReviewMode | int | str) -> ReviewMode:
    try:
        return ReviewMode.from_code(raw)
    except ValueError as exc:
        raise InvalidRuleDefinition(str(exc)) from None


def _normalize_category(raw: str | None) -> str | None:
    text = str(raw or "").strip()
    return text or None

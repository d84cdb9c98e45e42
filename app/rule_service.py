from __future__ import annotations

import logging
import uuid
from typing import Any, Protocol

from app.errors import InvalidRuleDefinition, RuleNameConflict, RuleNotFound
from app.mappers import rule_from_dict, rule_to_dict
from app.review_modes import ReviewMode
from app.review_rules import ReviewRule, RuleType
from app.rule_selector import RuleSelector

logger = logging.getLogger(__name__)


class ReviewRulesRepository(Protocol):
    def save(self, *, rule: dict[str, Any]) -> dict[str, Any]: ...

    def get(self, *, rule_id: str) -> dict[str, Any] | None: ...

    def get_by_name(self, *, name: str) -> dict[str, Any] | None: ...

    def list_all(self) -> list[dict[str, Any]]: ...

    def list_enabled_for_mode(self, *, mode_ordinal: int) -> list[dict[str, Any]]: ...

    def delete(self, *, rule_id: str) -> bool: ...


class ReviewRuleService:
    """Rule catalog management on top of a rules repository.

    Also serves as the catalog source for the extraction lifecycle.
    """

    def __init__(self, *, repository: ReviewRulesRepository, selector: RuleSelector | None = None) -> None:
        self._repository = repository
        self._selector = selector or RuleSelector()

    @staticmethod
    def _new_rule_id() -> str:
        return f"rule_{uuid.uuid4().hex[:12]}"

    def _ensure_name_available(self, name: str, *, rule_id: str | None = None) -> None:
        existing = self._repository.get_by_name(name=name)
        if existing is not None and existing.get("rule_id") != rule_id:
            raise RuleNameConflict(name)

    def create_rule(self, **fields: Any) -> ReviewRule:
        rule = ReviewRule.create(**fields)
        self._ensure_name_available(rule.name)
        saved = rule.with_id(self._new_rule_id())
        self._repository.save(rule=rule_to_dict(saved))
        logger.info("review_rule_created rule_id=%s type=%s", saved.rule_id, saved.rule_type.value)
        return saved

    def get_rule(self, rule_id: str) -> ReviewRule:
        row = self._repository.get(rule_id=rule_id)
        if row is None:
            raise RuleNotFound(rule_id)
        return rule_from_dict(row)

    def update_rule(self, rule_id: str, **fields: Any) -> ReviewRule:
        rule = self.get_rule(rule_id)
        rule.update(**fields)
        self._ensure_name_available(rule.name, rule_id=rule_id)
        self._repository.save(rule=rule_to_dict(rule))
        logger.info("review_rule_updated rule_id=%s", rule_id)
        return rule

    def enable_rule(self, rule_id: str) -> ReviewRule:
        rule = self.get_rule(rule_id)
        rule.enable()
        self._repository.save(rule=rule_to_dict(rule))
        return rule

    def disable_rule(self, rule_id: str) -> ReviewRule:
        rule = self.get_rule(rule_id)
        rule.disable()
        self._repository.save(rule=rule_to_dict(rule))
        return rule

    def delete_rule(self, rule_id: str) -> bool:
        deleted = self._repository.delete(rule_id=rule_id)
        if not deleted:
            logger.warning("review_rule_delete_missing rule_id=%s", rule_id)
        return deleted

    def list_rules(self) -> list[ReviewRule]:
        return [rule_from_dict(row) for row in self._repository.list_all()]

    def search_rules(
        self,
        *,
        name: str | None = None,
        rule_type: RuleType | None = None,
        enabled: bool | None = None,
        mode: ReviewMode | None = None,
        contract_type: str | None = None,
        clause_type: str | None = None,
    ) -> list[ReviewRule]:
        """Catalog browsing filter; exact declared-value matching, not applicability."""
        out: list[ReviewRule] = []
        for rule in self.list_rules():
            if name and name.lower() not in rule.name.lower():
                continue
            if rule_type is not None and rule.rule_type is not rule_type:
                continue
            if enabled is not None and rule.enabled != enabled:
                continue
            if mode is not None and rule.mode is not mode:
                continue
            if contract_type and contract_type not in rule.applicable_contract_types.values:
                continue
            if clause_type and clause_type not in rule.applicable_clause_types.values:
                continue
            out.append(rule)
        return out

    def is_name_available(self, name: str, *, rule_id: str | None = None) -> bool:
        text = str(name or "").strip()
        if not text:
            return False
        existing = self._repository.get_by_name(name=text)
        return existing is None or existing.get("rule_id") == rule_id

    def count_rules(self, *, enabled: bool | None = None) -> int:
        rows = self._repository.list_all()
        if enabled is None:
            return len(rows)
        return sum(1 for row in rows if bool(row.get("enabled", True)) is enabled)

    def rules_by_categories(self, categories: list[str]) -> list[ReviewRule]:
        wanted = {str(x).strip() for x in categories if str(x or "").strip()}
        if not wanted:
            return []
        return [rule for rule in self.list_rules() if rule.category in wanted]

    def list_enabled_for_mode(self, mode: ReviewMode) -> list[ReviewRule]:
        """Effective catalog for a mode. Rows that no longer decode are skipped."""
        out: list[ReviewRule] = []
        for row in self._repository.list_enabled_for_mode(mode_ordinal=mode.ordinal):
            try:
                out.append(rule_from_dict(row))
            except (InvalidRuleDefinition, ValueError) as exc:
                logger.warning("review_rule_row_skipped rule_id=%s error=%s", row.get("rule_id"), exc)
        return out

    def find_applicable(self, *, contract_type: str, clause_type: str, mode: ReviewMode) -> list[ReviewRule]:
        catalog = self.list_enabled_for_mode(mode)
        return self._selector.select(catalog, contract_type.strip(), clause_type.strip(), mode)

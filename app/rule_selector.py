from __future__ import annotations

from collections.abc import Iterable

from app.applicability import applies
from app.review_modes import ReviewMode, covers_at_least, ordinal
from app.review_rules import ReviewRule, RuleType

RULE_TYPE_PRECEDENCE: dict[RuleType, int] = {
    RuleType.SPECIFIC: 0,
    RuleType.FALLBACK: 1,
    RuleType.EXTENDED: 2,
}


def is_selectable(
    rule: ReviewRule,
    *,
    contract_type: str,
    clause_type: str,
    query_mode: ReviewMode,
) -> bool:
    return (
        rule.enabled
        and covers_at_least(rule.mode, query_mode)
        and applies(rule.applicable_contract_types, contract_type)
        and applies(rule.applicable_clause_types, clause_type)
    )


def _sort_rules(rules: list[ReviewRule]) -> list[ReviewRule]:
    # Applied least significant key first; sorted() is stable.
    out = sorted(rules, key=lambda r: (r.rule_id is None, r.rule_id or ""))
    out.sort(key=lambda r: r.created_at, reverse=True)
    out.sort(key=lambda r: (RULE_TYPE_PRECEDENCE[r.rule_type], ordinal(r.mode)))
    return out


def select(
    catalog: Iterable[ReviewRule],
    contract_type: str,
    clause_type: str,
    query_mode: ReviewMode,
) -> list[ReviewRule]:
    """Return the enabled rules governing one clause review, in reading order.

    An empty list means no rule governs the clause and the caller applies its own
    default policy. The catalog is only read.
    """
    matched: list[ReviewRule] = []
    seen: set[object] = set()
    for rule in catalog:
        key = rule.rule_id if rule.rule_id is not None else id(rule)
        if key in seen:
            continue
        seen.add(key)
        if is_selectable(
            rule,
            contract_type=contract_type,
            clause_type=clause_type,
            query_mode=query_mode,
        ):
            matched.append(rule)
    return _sort_rules(matched)


class RuleSelector:
    """Stateless wrapper so the selector can be passed around as a collaborator."""

    def select(
        self,
        catalog: Iterable[ReviewRule],
        contract_type: str,
        clause_type: str,
        query_mode: ReviewMode,
    ) -> list[ReviewRule]:
        return select(catalog, contract_type, clause_type, query_mode)

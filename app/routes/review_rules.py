from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from app.mappers import rule_fields_from_request, rule_to_dict
from app.routes._deps import engine_from_request, parse_mode, parse_rule_type, trace_id_from_request
from app.schemas import ApplicableRulesRequest, ReviewRuleRequest, success_envelope

router = APIRouter(prefix="/api/v1", tags=["review-rules"])


@router.get("/review-rules")
def list_review_rules(
    request: Request,
    name: str | None = Query(default=None),
    rule_type: str | None = Query(default=None),
    enabled: bool | None = Query(default=None),
    mode: str | None = Query(default=None),
    contract_type: str | None = Query(default=None),
    clause_type: str | None = Query(default=None),
):
    rules = engine_from_request(request).rules.search_rules(
        name=name,
        rule_type=parse_rule_type(rule_type) if rule_type else None,
        enabled=enabled,
        mode=parse_mode(mode) if mode else None,
        contract_type=contract_type,
        clause_type=clause_type,
    )
    items = [rule_to_dict(x) for x in rules]
    return success_envelope({"items": items, "total": len(items)}, trace_id_from_request(request))


@router.post("/review-rules")
def create_review_rule(payload: ReviewRuleRequest, request: Request):
    rule = engine_from_request(request).rules.create_rule(**rule_fields_from_request(payload.model_dump()))
    return JSONResponse(status_code=201, content=success_envelope(rule_to_dict(rule), trace_id_from_request(request)))


@router.post("/review-rules/applicable")
def find_applicable_rules(payload: ApplicableRulesRequest, request: Request):
    rules = engine_from_request(request).rules.find_applicable(
        contract_type=payload.contract_type,
        clause_type=payload.clause_type,
        mode=parse_mode(payload.mode),
    )
    items = [rule_to_dict(x) for x in rules]
    return success_envelope({"items": items, "total": len(items)}, trace_id_from_request(request))


@router.get("/review-rules/name-availability")
def review_rule_name_availability(
    request: Request,
    name: str = Query(...),
    rule_id: str | None = Query(default=None),
):
    available = engine_from_request(request).rules.is_name_available(name, rule_id=rule_id)
    return success_envelope({"name": name, "available": available}, trace_id_from_request(request))


@router.get("/review-rules/count")
def count_review_rules(request: Request, enabled: bool | None = Query(default=None)):
    count = engine_from_request(request).rules.count_rules(enabled=enabled)
    return success_envelope({"enabled": enabled, "count": count}, trace_id_from_request(request))


@router.get("/review-rules/effective")
def effective_review_rules(request: Request, mode: str = Query(...)):
    rules = engine_from_request(request).rules.list_enabled_for_mode(parse_mode(mode))
    items = [rule_to_dict(x) for x in rules]
    return success_envelope({"items": items, "total": len(items)}, trace_id_from_request(request))


@router.get("/review-rules/by-categories")
def review_rules_by_categories(request: Request, categories: list[str] = Query(...)):
    rules = engine_from_request(request).rules.rules_by_categories(categories)
    items = [rule_to_dict(x) for x in rules]
    return success_envelope({"items": items, "total": len(items)}, trace_id_from_request(request))


@router.get("/review-rules/{rule_id}")
def get_review_rule(rule_id: str, request: Request):
    rule = engine_from_request(request).rules.get_rule(rule_id)
    return success_envelope(rule_to_dict(rule), trace_id_from_request(request))


@router.put("/review-rules/{rule_id}")
def update_review_rule(rule_id: str, payload: ReviewRuleRequest, request: Request):
    rule = engine_from_request(request).rules.update_rule(rule_id, **rule_fields_from_request(payload.model_dump()))
    return success_envelope(rule_to_dict(rule), trace_id_from_request(request))


@router.post("/review-rules/{rule_id}/enable")
def enable_review_rule(rule_id: str, request: Request):
    rule = engine_from_request(request).rules.enable_rule(rule_id)
    return success_envelope(rule_to_dict(rule), trace_id_from_request(request))


@router.post("/review-rules/{rule_id}/disable")
def disable_review_rule(rule_id: str, request: Request):
    rule = engine_from_request(request).rules.disable_rule(rule_id)
    return success_envelope(rule_to_dict(rule), trace_id_from_request(request))


@router.delete("/review-rules/{rule_id}")
def delete_review_rule(rule_id: str, request: Request):
    deleted = engine_from_request(request).rules.delete_rule(rule_id)
    return success_envelope({"rule_id": rule_id, "deleted": deleted}, trace_id_from_request(request))

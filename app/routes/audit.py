from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query, Request

from app.audit_trail import DEFAULT_QUERY_LIMIT
from app.mappers import audit_entry_to_dict
from app.routes._deps import engine_from_request, trace_id_from_request
from app.schemas import success_envelope

router = APIRouter(prefix="/api/v1", tags=["audit"])


@router.get("/audit/contracts/{contract_id}")
def contract_audit_trail(contract_id: str, request: Request):
    trail = engine_from_request(request).audit_trail
    items = [audit_entry_to_dict(x) for x in trail.find_by_contract(contract_id)]
    data = {
        "items": items,
        "total": len(items),
        "latest_run_id": trail.latest_run_id(contract_id),
    }
    return success_envelope(data, trace_id_from_request(request))


@router.get("/audit/runs/{run_id}")
def run_audit_trail(run_id: str, request: Request):
    items = [audit_entry_to_dict(x) for x in engine_from_request(request).audit_trail.find_by_run(run_id)]
    return success_envelope({"items": items, "total": len(items)}, trace_id_from_request(request))


@router.get("/audit/actors/{actor_id}")
def actor_audit_trail(
    actor_id: str,
    request: Request,
    limit: int = Query(default=DEFAULT_QUERY_LIMIT, ge=1, le=1000),
):
    entries = engine_from_request(request).audit_trail.find_by_actor(actor_id, limit=limit)
    items = [audit_entry_to_dict(x) for x in entries]
    return success_envelope({"items": items, "total": len(items)}, trace_id_from_request(request))


@router.get("/audit/logs")
def audit_logs_in_range(
    request: Request,
    start: datetime = Query(...),
    end: datetime = Query(...),
    limit: int = Query(default=DEFAULT_QUERY_LIMIT, ge=1, le=1000),
):
    entries = engine_from_request(request).audit_trail.find_between(start, end, limit=limit)
    items = [audit_entry_to_dict(x) for x in entries]
    return success_envelope({"items": items, "total": len(items)}, trace_id_from_request(request))


@router.get("/audit/logs/count")
def count_audit_logs_in_range(
    request: Request,
    start: datetime = Query(...),
    end: datetime = Query(...),
):
    count = engine_from_request(request).audit_trail.count_between(start, end)
    return success_envelope({"count": count}, trace_id_from_request(request))


@router.get("/audit/integrity")
def audit_integrity(request: Request):
    report = engine_from_request(request).audit_trail.verify_integrity()
    return success_envelope(report, trace_id_from_request(request))

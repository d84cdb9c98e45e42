from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from app.mappers import run_to_dict
from app.routes._deps import (
    actor_from_request,
    authenticated_subject,
    engine_from_request,
    parse_mode,
    trace_id_from_request,
)
from app.schemas import (
    BeginExtractionRequest,
    CompleteExtractionRequest,
    FailExtractionRequest,
    TriggerExtractionRequest,
    success_envelope,
)

router = APIRouter(prefix="/api/v1", tags=["extractions"])


@router.post("/extractions")
def trigger_extraction(payload: TriggerExtractionRequest, request: Request):
    run = engine_from_request(request).lifecycle.trigger(
        payload.contract_id,
        actor_from_request(request, payload.requested_by),
        contract_type=payload.contract_type,
    )
    return JSONResponse(status_code=201, content=success_envelope(run_to_dict(run), trace_id_from_request(request)))


@router.post("/extractions/{run_id}/begin")
def begin_extraction(run_id: str, payload: BeginExtractionRequest, request: Request):
    run = engine_from_request(request).lifecycle.begin(
        run_id,
        clause_type=payload.clause_type,
        mode=parse_mode(payload.mode) if payload.mode is not None else None,
        contract_type=payload.contract_type,
    )
    return success_envelope(run_to_dict(run), trace_id_from_request(request))


@router.post("/extractions/{run_id}/complete")
def complete_extraction(run_id: str, payload: CompleteExtractionRequest, request: Request):
    run = engine_from_request(request).lifecycle.complete(
        run_id,
        payload.outcome_summary,
        actor_id=authenticated_subject(request),
    )
    return success_envelope(run_to_dict(run), trace_id_from_request(request))


@router.post("/extractions/{run_id}/fail")
def fail_extraction(run_id: str, payload: FailExtractionRequest, request: Request):
    run = engine_from_request(request).lifecycle.fail(
        run_id,
        payload.error_message,
        actor_id=authenticated_subject(request),
    )
    return success_envelope(run_to_dict(run), trace_id_from_request(request))


@router.get("/extractions/{run_id}")
def get_extraction(run_id: str, request: Request):
    run = engine_from_request(request).lifecycle.get_run(run_id)
    return success_envelope(run_to_dict(run), trace_id_from_request(request))


@router.get("/contracts/{contract_id}/extractions")
def list_contract_extractions(contract_id: str, request: Request):
    lifecycle = engine_from_request(request).lifecycle
    items = [run_to_dict(x) for x in lifecycle.runs_for_contract(contract_id)]
    active = lifecycle.active_run_for(contract_id)
    data = {
        "items": items,
        "total": len(items),
        "active_run_id": active.run_id if active else None,
    }
    return success_envelope(data, trace_id_from_request(request))

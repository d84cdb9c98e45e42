from __future__ import annotations

import uuid
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from app.assembly import Engine
from app.errors import ApiError
from app.review_modes import ReviewMode
from app.review_rules import RuleType
from app.schemas import error_envelope


def trace_id_from_request(request: Request) -> str:
    trace_id = getattr(request.state, "trace_id", None)
    if trace_id:
        return trace_id
    return uuid.uuid4().hex


def request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    return f"req_{uuid.uuid4().hex[:12]}"


def authenticated_subject(request: Request) -> str | None:
    subject = getattr(request.state, "auth_subject", None)
    if subject and subject != "anonymous":
        return subject
    return None


def actor_from_request(request: Request, fallback: str | None = None) -> str:
    subject = authenticated_subject(request)
    if subject:
        return subject
    return (fallback or "").strip() or "anonymous"


def engine_from_request(request: Request) -> Engine:
    return request.app.state.engine


def parse_mode(raw: Any, *, field: str = "mode") -> ReviewMode:
    try:
        return ReviewMode.from_code(raw)
    except ValueError:
        raise ApiError(
            code="REQ_VALIDATION_FAILED",
            message=f"unknown review mode for {field}: {raw}",
            error_class="validation",
            retryable=False,
            http_status=400,
        ) from None


def parse_rule_type(raw: str) -> RuleType:
    try:
        return RuleType.from_code(raw)
    except ValueError:
        raise ApiError(
            code="REQ_VALIDATION_FAILED",
            message=f"unknown rule type: {raw}",
            error_class="validation",
            retryable=False,
            http_status=400,
        ) from None


def error_response(
    request: Request,
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    status_code: int,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_envelope(
            code=code,
            message=message,
            error_class=error_class,
            retryable=retryable,
            trace_id=trace_id_from_request(request),
        ),
    )

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ReviewRuleRequest(BaseModel):
    name: str
    rule_type: str
    applicable_contract_types: list[str]
    applicable_clause_types: list[str]
    content: str
    mode: str | int
    remark: str | None = None
    category: str | None = None


class ApplicableRulesRequest(BaseModel):
    contract_type: str
    clause_type: str
    mode: str | int


class TriggerExtractionRequest(BaseModel):
    contract_id: str = Field(min_length=1)
    contract_type: str = ""
    requested_by: str | None = None


class BeginExtractionRequest(BaseModel):
    clause_type: str
    mode: str | int | None = None
    contract_type: str | None = None


class CompleteExtractionRequest(BaseModel):
    outcome_summary: str | None = None


class FailExtractionRequest(BaseModel):
    error_message: str = ""


def success_envelope(data: Any, trace_id: str, message: str = "ok") -> dict[str, Any]:
    return {
        "success": True,
        "data": data,
        "message": message,
        "meta": {
            "trace_id": trace_id,
        },
    }


def error_envelope(
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    trace_id: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "retryable": retryable,
        "class": error_class,
    }
    if details is not None:
        error["details"] = details
    return {
        "success": False,
        "error": error,
        "meta": {
            "trace_id": trace_id,
        },
    }

from __future__ import annotations

import logging
import os
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from app.assembly import Engine, build_engine
from app.errors import ApiError
from app.routes import audit, extractions, review_rules
from app.routes._deps import error_response, request_id_from_request, trace_id_from_request
from app.schemas import success_envelope
from app.security import JwtSecurityConfig, parse_and_validate_bearer_token, redact_sensitive

logger = logging.getLogger(__name__)

engine = build_engine()


def _log_security_blocked(request: Request, exc: ApiError) -> None:
    logger.warning(
        "security_blocked path=%s code=%s detail=%s headers=%s",
        request.url.path,
        exc.code,
        exc.message,
        redact_sensitive(dict(request.headers.items())),
    )


def create_app(engine_override: Engine | None = None) -> FastAPI:
    app = FastAPI(title="Contract Review Engine API", version="0.1.0")
    app.state.engine = engine_override or engine
    security_cfg = JwtSecurityConfig.from_env()
    app.state.security_cfg = security_cfg
    cors_origins = os.environ.get("CORS_ALLOW_ORIGINS", "http://127.0.0.1:5173,http://localhost:5173")
    allow_origins = [x.strip() for x in cors_origins.split(",") if x.strip()]
    if allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def add_trace_id(request: Request, call_next):
        incoming_trace_id = request.headers.get("x-trace-id", "").strip()
        request.state.trace_id = incoming_trace_id or uuid.uuid4().hex
        request.state.request_id = request.headers.get("x-request-id", f"req_{uuid.uuid4().hex[:12]}")
        request.state.auth_subject = "anonymous"
        path = request.url.path
        try:
            if security_cfg.trace_id_strict_required and path.startswith("/api/v1/") and not incoming_trace_id:
                raise ApiError(
                    code="TRACE_ID_REQUIRED",
                    message="x-trace-id header is required",
                    error_class="validation",
                    retryable=False,
                    http_status=400,
                )
            if security_cfg.enabled and path.startswith("/api/v1/"):
                auth_ctx = parse_and_validate_bearer_token(
                    authorization=request.headers.get("Authorization"),
                    cfg=security_cfg,
                )
                request.state.auth_subject = auth_ctx.subject
            response = await call_next(request)
        except ApiError as exc:
            if exc.code == "AUTH_UNAUTHORIZED":
                _log_security_blocked(request, exc)
            response = error_response(
                request,
                code=exc.code,
                message=exc.message,
                error_class=exc.error_class,
                retryable=exc.retryable,
                status_code=exc.http_status,
            )
        response.headers["x-trace-id"] = trace_id_from_request(request)
        response.headers["x-request-id"] = request_id_from_request(request)
        return response

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        if exc.http_status >= 500:
            logger.error("api_error path=%s code=%s message=%s", request.url.path, exc.code, exc.message)
        return error_response(
            request,
            code=exc.code,
            message=exc.message,
            error_class=exc.error_class,
            retryable=exc.retryable,
            status_code=exc.http_status,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return error_response(
            request,
            code="REQ_VALIDATION_FAILED",
            message="invalid payload",
            error_class="validation",
            retryable=False,
            status_code=400,
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_response(
                request,
                code="REQ_NOT_FOUND",
                message="resource not found",
                error_class="validation",
                retryable=False,
                status_code=404,
            )
        return error_response(
            request,
            code="REQ_HTTP_ERROR",
            message=str(exc.detail),
            error_class="validation",
            retryable=False,
            status_code=exc.status_code,
        )

    @app.get("/healthz")
    def healthz(request: Request) -> dict[str, object]:
        return success_envelope({"status": "ok"}, trace_id_from_request(request))

    app.include_router(review_rules.router)
    app.include_router(extractions.router)
    app.include_router(audit.router)
    return app


app = create_app()

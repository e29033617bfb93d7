from __future__ import annotations

import logging
import os
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from achievement_tracker.errors import ApiError
from achievement_tracker.lifecycle import AchievementLifecycle
from achievement_tracker.models import Actor
from achievement_tracker.routes._deps import error_response, request_id_from_request, trace_id_from_request
from achievement_tracker.routes.achievements import router as achievements_router
from achievement_tracker.schemas import success_envelope
from achievement_tracker.security import JwtSecurityConfig, parse_and_validate_bearer_token, redact_sensitive
from achievement_tracker.settings import build_lifecycle_from_env

logger = logging.getLogger(__name__)


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _configure_logging() -> int:
    name = os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO"
    level = getattr(logging, name, None)
    if not isinstance(level, int):
        level = logging.INFO
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    else:
        root.setLevel(level)
    logging.getLogger("achievement_tracker").setLevel(level)
    return level


def create_app(lifecycle: AchievementLifecycle | None = None) -> FastAPI:
    _configure_logging()
    app = FastAPI(title="Achievement Tracker API", version="0.1.0")
    security_cfg = JwtSecurityConfig.from_env()
    app.state.security_cfg = security_cfg
    app.state.lifecycle = lifecycle if lifecycle is not None else build_lifecycle_from_env()
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
        request.state.actor = None
        try:
            if request.url.path.startswith("/api/v1/"):
                if security_cfg.enabled:
                    request.state.actor = parse_and_validate_bearer_token(
                        authorization=request.headers.get("Authorization"),
                        cfg=security_cfg,
                    )
                else:
                    actor_id = request.headers.get("x-actor-id", "").strip()
                    request.state.actor = Actor(subject=actor_id) if actor_id else None
            response = await call_next(request)
        except ApiError as exc:
            logger.warning(
                "request_blocked code=%s path=%s headers=%s",
                exc.code,
                request.url.path,
                redact_sensitive(dict(request.headers.items())),
            )
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
        return error_response(
            request,
            code=exc.code,
            message=exc.message,
            error_class=exc.error_class,
            retryable=exc.retryable,
            status_code=exc.http_status,
            details=exc.details,
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

    app.include_router(achievements_router)
    return app

from __future__ import annotations

import uuid

from fastapi import Request
from fastapi.responses import JSONResponse

from achievement_tracker.errors import ApiError, Unauthorized
from achievement_tracker.lifecycle import AchievementLifecycle
from achievement_tracker.models import Actor
from achievement_tracker.schemas import error_envelope
from achievement_tracker.scope import ROLE_ADMIN


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


def actor_from_request(request: Request) -> Actor:
    actor = getattr(request.state, "actor", None)
    if actor is None:
        raise ApiError(
            code="AUTH_UNAUTHORIZED",
            message="missing actor identity",
            error_class="security_sensitive",
            retryable=False,
            http_status=401,
        )
    return actor


def lifecycle_from_request(request: Request) -> AchievementLifecycle:
    return request.app.state.lifecycle


def require_admin(request: Request) -> Actor:
    actor = actor_from_request(request)
    lifecycle = lifecycle_from_request(request)
    if lifecycle.scopes.resolve_role(actor) != ROLE_ADMIN:
        raise Unauthorized()
    return actor


def error_response(
    request: Request,
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    status_code: int,
    details: dict | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_envelope(
            code=code,
            message=message,
            error_class=error_class,
            retryable=retryable,
            trace_id=trace_id_from_request(request),
            details=details,
        ),
    )

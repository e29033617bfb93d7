from __future__ import annotations

from fastapi import APIRouter, Body, Query, Request
from fastapi.responses import JSONResponse

from achievement_tracker.routes._deps import (
    actor_from_request,
    lifecycle_from_request,
    require_admin,
    trace_id_from_request,
)
from achievement_tracker.schemas import CreateAchievementRequest, ReviewRequest, success_envelope

router = APIRouter(prefix="/api/v1", tags=["achievements"])


@router.post("/achievements")
def create_achievement(request: Request, payload: CreateAchievementRequest = Body(...)):
    lifecycle = lifecycle_from_request(request)
    data = lifecycle.create_achievement(actor_from_request(request), payload)
    return JSONResponse(
        status_code=201,
        content=success_envelope(data, trace_id_from_request(request), message="achievement created"),
    )


@router.get("/achievements")
def list_achievements(
    request: Request,
    page: int = Query(default=1),
    limit: int = Query(default=0),
):
    lifecycle = lifecycle_from_request(request)
    page_value, size = lifecycle.normalize_page(page, limit)
    items, total = lifecycle.list_achievements(actor_from_request(request), page_value, size)
    return success_envelope(
        {
            "items": [item.to_dict() for item in items],
            "total": total,
            "page": page_value,
            "limit": size,
        },
        trace_id_from_request(request),
    )


@router.get("/achievement-references")
def list_achievement_references(
    request: Request,
    page: int = Query(default=1),
    limit: int = Query(default=0),
):
    lifecycle = lifecycle_from_request(request)
    page_value, size = lifecycle.normalize_page(page, limit)
    rows, total = lifecycle.list_references(actor_from_request(request), page_value, size)
    return success_envelope(
        {
            "items": [row.to_dict() for row in rows],
            "total": total,
            "page": page_value,
            "limit": size,
        },
        trace_id_from_request(request),
    )


@router.put("/achievements/{reference_id}/submit")
def submit_achievement(reference_id: str, request: Request):
    lifecycle_from_request(request).submit(actor_from_request(request), reference_id)
    return success_envelope(
        {"reference_id": reference_id, "status": "submitted"},
        trace_id_from_request(request),
        message="achievement submitted",
    )


@router.put("/achievements/{reference_id}/review")
def review_achievement(reference_id: str, request: Request, payload: ReviewRequest = Body(...)):
    lifecycle_from_request(request).review(
        actor_from_request(request),
        reference_id,
        payload.status,
        payload.rejection_note,
    )
    return success_envelope(
        {"reference_id": reference_id, "status": payload.status.strip().lower()},
        trace_id_from_request(request),
        message="achievement reviewed",
    )


@router.put("/achievements/{reference_id}/soft-delete")
def soft_delete_achievement(reference_id: str, request: Request):
    lifecycle_from_request(request).soft_delete(actor_from_request(request), reference_id)
    return success_envelope(
        {"reference_id": reference_id, "status": "deleted"},
        trace_id_from_request(request),
        message="achievement deleted",
    )


@router.delete("/achievements/{reference_id}")
def force_delete_achievement(reference_id: str, request: Request):
    lifecycle_from_request(request).force_delete(actor_from_request(request), reference_id)
    return success_envelope(
        {"reference_id": reference_id, "status": "deleted"},
        trace_id_from_request(request),
        message="achievement deleted",
    )


@router.delete("/achievements/{reference_id}/purge")
def purge_achievement(reference_id: str, request: Request):
    actor = require_admin(request)
    lifecycle_from_request(request).hard_delete(actor, reference_id)
    return success_envelope(
        {"reference_id": reference_id, "purged": True},
        trace_id_from_request(request),
        message="achievement purged",
    )

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from achievement_tracker.content_store import ContentStore
from achievement_tracker.directory import IdentityResolver, StudentDirectory
from achievement_tracker.errors import NotFoundOrForbiddenOrWrongState, Unauthorized, ValidationFailed
from achievement_tracker.models import (
    AccessScope,
    AchievementReference,
    AchievementStatus,
    Actor,
    ContentDeleteResult,
    ReviewDecision,
)
from achievement_tracker.schemas import AchievementContent, CreateAchievementRequest, build_achievement_payload
from achievement_tracker.scope import ROLE_ADMIN, ROLE_ADVISOR, ScopeResolver

logger = logging.getLogger(__name__)


class ReferencesRepository(Protocol):
    def create_draft(self, *, student_id: str, content_id: str) -> AchievementReference: ...

    def submit_draft(self, *, reference_id: str, student_id: str) -> bool: ...

    def review(
        self, *, reference_id: str, decision: ReviewDecision, reviewer_id: str, note: str | None = None
    ) -> bool: ...

    def force_delete(self, *, reference_id: str, admin_id: str) -> bool: ...

    def delete_by_student(self, *, reference_id: str, student_id: str) -> bool: ...

    def hard_delete(self, *, reference_id: str) -> bool: ...

    def get(self, *, reference_id: str) -> AchievementReference | None: ...

    def list_by_statuses(
        self,
        *,
        statuses: Sequence[AchievementStatus],
        student_id: str | None = None,
        advisor_id: str | None = None,
        page: int = 1,
        page_size: int = 10,
    ) -> tuple[list[AchievementReference], int]: ...


@dataclass(frozen=True)
class AchievementView:
    reference: AchievementReference
    content: AchievementContent | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "reference": self.reference.to_dict(),
            "achievement": None if self.content is None else self.content.model_dump(mode="json"),
        }


def parse_review_input(decision: str, note: str | None) -> tuple[ReviewDecision, str | None]:
    normalized = (decision or "").strip().lower()
    try:
        parsed = ReviewDecision(normalized)
    except ValueError:
        raise ValidationFailed("status must be verified or rejected") from None
    cleaned = (note or "").strip()
    if parsed is ReviewDecision.REJECTED:
        if not cleaned:
            raise ValidationFailed("rejection_note is required when status is rejected")
        return parsed, cleaned
    return parsed, None


class AchievementLifecycle:
    """Sequences content-store and reference-store calls for every achievement operation.

    The reference store is authoritative for status. Content is written before its
    reference on create and removed before its reference on purge; neither step is
    compensated if the second one fails.
    """

    def __init__(
        self,
        *,
        content_store: ContentStore,
        references: ReferencesRepository,
        identity: IdentityResolver,
        students: StudentDirectory,
        scopes: ScopeResolver,
        default_page_size: int = 10,
        max_page_size: int = 100,
    ) -> None:
        self._content = content_store
        self._references = references
        self._identity = identity
        self._students = students
        self._scopes = scopes
        self._default_page_size = max(1, default_page_size)
        self._max_page_size = max(self._default_page_size, max_page_size)

    @property
    def content_store(self) -> ContentStore:
        return self._content

    @property
    def references(self) -> ReferencesRepository:
        return self._references

    @property
    def scopes(self) -> ScopeResolver:
        return self._scopes

    def normalize_page(self, page: int | None, page_size: int | None) -> tuple[int, int]:
        page_value = page if page and page > 0 else 1
        if not page_size or page_size < 1:
            size = self._default_page_size
        else:
            size = min(page_size, self._max_page_size)
        return page_value, size

    def _owned_student_id(self, actor: Actor) -> str:
        student_id = self._identity.resolve_owned_student_id(actor)
        if student_id is None:
            raise Unauthorized("no student record for actor")
        return student_id

    def create_achievement(
        self, actor: Actor, payload: CreateAchievementRequest | dict[str, Any]
    ) -> dict[str, str]:
        student_id = self._owned_student_id(actor)
        validated = build_achievement_payload(payload)
        content_id = self._content.create(student_id=student_id, payload=validated)
        try:
            reference = self._references.create_draft(student_id=student_id, content_id=content_id)
        except Exception:
            logger.warning(
                "achievement_reference_create_failed orphaned_content_id=%s student_id=%s",
                content_id,
                student_id,
            )
            raise
        logger.info(
            "achievement_created ref_id=%s content_id=%s actor=%s", reference.id, content_id, actor.subject
        )
        return {"reference_id": reference.id, "content_id": content_id, "status": reference.status.value}

    def submit(self, actor: Actor, reference_id: str) -> None:
        student_id = self._owned_student_id(actor)
        if not self._references.submit_draft(reference_id=reference_id, student_id=student_id):
            raise NotFoundOrForbiddenOrWrongState()
        logger.info("achievement_submitted ref_id=%s actor=%s", reference_id, actor.subject)

    def review(self, actor: Actor, reference_id: str, decision: str, note: str | None = None) -> None:
        parsed, cleaned_note = parse_review_input(decision, note)
        role = self._scopes.resolve_role(actor)
        if role not in {ROLE_ADMIN, ROLE_ADVISOR}:
            raise Unauthorized()
        if role == ROLE_ADVISOR:
            advisor_id = self._scopes.resolve(actor).advisor_id
            reference = self._references.get(reference_id=reference_id)
            if reference is None or self._students.get_advisor_of(reference.student_id) != advisor_id:
                raise NotFoundOrForbiddenOrWrongState()
        applied = self._references.review(
            reference_id=reference_id,
            decision=parsed,
            reviewer_id=actor.subject,
            note=cleaned_note,
        )
        if not applied:
            raise NotFoundOrForbiddenOrWrongState()
        logger.info(
            "achievement_reviewed ref_id=%s decision=%s actor=%s", reference_id, parsed.value, actor.subject
        )

    def soft_delete(self, actor: Actor, reference_id: str) -> None:
        student_id = self._owned_student_id(actor)
        if not self._references.delete_by_student(reference_id=reference_id, student_id=student_id):
            raise NotFoundOrForbiddenOrWrongState()
        logger.info("achievement_soft_deleted ref_id=%s actor=%s", reference_id, actor.subject)

    def force_delete(self, actor: Actor, reference_id: str) -> None:
        if self._scopes.resolve_role(actor) != ROLE_ADMIN:
            raise Unauthorized()
        if not self._references.force_delete(reference_id=reference_id, admin_id=actor.subject):
            raise NotFoundOrForbiddenOrWrongState()
        logger.info("achievement_force_deleted ref_id=%s actor=%s", reference_id, actor.subject)

    def hard_delete(self, actor: Actor, reference_id: str) -> None:
        # Administrator gate is enforced by the caller.
        reference = self._references.get(reference_id=reference_id)
        if reference is None or reference.status is not AchievementStatus.DELETED:
            raise NotFoundOrForbiddenOrWrongState()
        if self._content.delete(reference.content_id) is ContentDeleteResult.ABSENT:
            logger.warning(
                "achievement_purge_content_absent ref_id=%s content_id=%s", reference_id, reference.content_id
            )
        if not self._references.hard_delete(reference_id=reference_id):
            raise NotFoundOrForbiddenOrWrongState()
        logger.info("achievement_purged ref_id=%s actor=%s", reference_id, actor.subject)

    def _list_scoped(
        self, actor: Actor, page: int | None, page_size: int | None
    ) -> tuple[list[AchievementReference], int]:
        scope: AccessScope = self._scopes.resolve(actor)
        page_value, size = self.normalize_page(page, page_size)
        return self._references.list_by_statuses(
            statuses=scope.statuses,
            student_id=scope.student_id,
            advisor_id=scope.advisor_id,
            page=page_value,
            page_size=size,
        )

    def list_references(
        self, actor: Actor, page: int | None = None, page_size: int | None = None
    ) -> tuple[list[AchievementReference], int]:
        return self._list_scoped(actor, page, page_size)

    def list_achievements(
        self, actor: Actor, page: int | None = None, page_size: int | None = None
    ) -> tuple[list[AchievementView], int]:
        rows, total = self._list_scoped(actor, page, page_size)
        contents = {item.id: item for item in self._content.get_many(row.content_id for row in rows)}
        return [AchievementView(reference=row, content=contents.get(row.content_id)) for row in rows], total

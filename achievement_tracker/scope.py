from __future__ import annotations

from achievement_tracker.directory import IdentityResolver, ReviewerDirectory
from achievement_tracker.errors import Unauthorized
from achievement_tracker.models import ALL_STATUSES, AccessScope, Actor, AchievementStatus

ROLE_ADMIN = "admin"
ROLE_STUDENT = "student"
ROLE_ADVISOR = "advisor"
ROLE_STAFF = "staff"

_ROLE_ALIASES = {
    "admin": ROLE_ADMIN,
    "administrator": ROLE_ADMIN,
    "student": ROLE_STUDENT,
    "mahasiswa": ROLE_STUDENT,
    "advisor": ROLE_ADVISOR,
    "dosen wali": ROLE_ADVISOR,
    "lecturer": ROLE_ADVISOR,
    "staff": ROLE_STAFF,
    "auditor": ROLE_STAFF,
}

_STUDENT_STATUSES = (
    AchievementStatus.DRAFT,
    AchievementStatus.SUBMITTED,
    AchievementStatus.VERIFIED,
    AchievementStatus.REJECTED,
)
_ADVISOR_STATUSES = (AchievementStatus.SUBMITTED,)
_STAFF_STATUSES = (AchievementStatus.VERIFIED, AchievementStatus.REJECTED)


def normalize_role(raw: str | None) -> str | None:
    if raw is None:
        return None
    return _ROLE_ALIASES.get(" ".join(raw.strip().lower().split()))


class ScopeResolver:
    """Map an actor to the statuses it may see and the ownership filter applied to listings."""

    def __init__(self, *, identity: IdentityResolver, reviewers: ReviewerDirectory) -> None:
        self._identity = identity
        self._reviewers = reviewers

    def resolve_role(self, actor: Actor) -> str:
        role = normalize_role(self._identity.resolve_role(actor))
        if role is None:
            raise Unauthorized()
        return role

    def resolve(self, actor: Actor) -> AccessScope:
        role = self.resolve_role(actor)
        if role == ROLE_ADMIN:
            return AccessScope(role=role, statuses=ALL_STATUSES)
        if role == ROLE_STUDENT:
            student_id = self._identity.resolve_owned_student_id(actor)
            if student_id is None:
                raise Unauthorized("no student record for actor")
            return AccessScope(role=role, statuses=_STUDENT_STATUSES, student_id=student_id)
        if role == ROLE_ADVISOR:
            reviewer_id = self._reviewers.get_reviewer_by_actor(actor)
            if reviewer_id is None:
                raise Unauthorized("no reviewer record for actor")
            return AccessScope(role=role, statuses=_ADVISOR_STATUSES, advisor_id=reviewer_id)
        return AccessScope(role=role, statuses=_STAFF_STATUSES)

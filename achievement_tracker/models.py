from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class AchievementStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    VERIFIED = "verified"
    REJECTED = "rejected"
    DELETED = "deleted"


ALL_STATUSES: tuple[AchievementStatus, ...] = tuple(AchievementStatus)

# Edges of the workflow graph; "deleted" is reachable from any other status
# only through the administrator force-delete.
ALLOWED_TRANSITIONS: dict[AchievementStatus, set[AchievementStatus]] = {
    AchievementStatus.DRAFT: {AchievementStatus.SUBMITTED, AchievementStatus.DELETED},
    AchievementStatus.SUBMITTED: {
        AchievementStatus.VERIFIED,
        AchievementStatus.REJECTED,
        AchievementStatus.DELETED,
    },
    AchievementStatus.VERIFIED: {AchievementStatus.DELETED},
    AchievementStatus.REJECTED: {AchievementStatus.DELETED},
    AchievementStatus.DELETED: set(),
}


class ReviewDecision(str, Enum):
    VERIFIED = "verified"
    REJECTED = "rejected"


class ContentDeleteResult(str, Enum):
    DELETED = "deleted"
    # Not found; "already removed" and "never existed" are not told apart.
    ABSENT = "absent"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class AchievementReference:
    id: str
    student_id: str
    content_id: str
    status: AchievementStatus
    submitted_at: datetime | None
    verified_at: datetime | None
    verified_by: str | None
    rejection_note: str | None
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        for key in ("submitted_at", "verified_at", "created_at", "updated_at"):
            data[key] = _iso(data[key])
        return data


@dataclass(frozen=True)
class AccessScope:
    role: str
    statuses: tuple[AchievementStatus, ...]
    student_id: str | None = None
    advisor_id: str | None = None


@dataclass(frozen=True)
class ContentLink:
    reference_id: str
    content_id: str
    status: AchievementStatus
    updated_at: datetime


@dataclass(frozen=True)
class Actor:
    subject: str
    claims: dict[str, Any] = field(default_factory=dict)

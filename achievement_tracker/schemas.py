from __future__ import annotations

import math
from datetime import UTC, date, datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from achievement_tracker.errors import ValidationFailed


class AchievementCategory(str, Enum):
    ACADEMIC = "academic"
    COMPETITION = "competition"
    ORGANIZATION = "organization"
    PUBLICATION = "publication"
    CERTIFICATION = "certification"
    OTHER = "other"


def _has_non_finite(value: Any) -> bool:
    if isinstance(value, float):
        return not math.isfinite(value)
    if isinstance(value, dict):
        return any(_has_non_finite(item) for item in value.values())
    if isinstance(value, list | tuple):
        return any(_has_non_finite(item) for item in value)
    return False


class _Details(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid", allow_inf_nan=False)


class CompetitionDetails(_Details):
    category: Literal["competition"] = "competition"
    competition_name: str | None = None
    competition_level: str | None = None
    rank: int | None = None
    organizer: str | None = None
    medal_type: str | None = None

    @field_validator("rank", mode="before")
    @classmethod
    def _coerce_rank(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int | float):
            raise ValueError("rank must be numeric")
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError("rank must be numeric")
        return int(value)

    @field_validator("competition_level")
    @classmethod
    def _normalize_level(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip().lower()


class PublicationDetails(_Details):
    category: Literal["publication"] = "publication"
    publication_type: str | None = None
    publication_title: str | None = None
    authors: list[str] = Field(default_factory=list)
    publisher: str | None = None
    issn: str | None = None


class OrganizationDetails(_Details):
    category: Literal["organization"] = "organization"
    organization_name: str | None = None
    position: str | None = None
    period_start: date | None = None
    period_end: date | None = None

    @model_validator(mode="after")
    def _check_period(self) -> "OrganizationDetails":
        if self.period_start and self.period_end and self.period_end < self.period_start:
            raise ValueError("period_end must not precede period_start")
        return self


class CertificationDetails(_Details):
    category: Literal["certification"] = "certification"
    certification_name: str | None = None
    issued_by: str | None = None
    certification_number: str | None = None
    valid_until: date | None = None


class AcademicDetails(_Details):
    category: Literal["academic"] = "academic"
    description: str | None = None
    score: float | None = Field(default=None, ge=0)


class OtherDetails(_Details):
    model_config = ConfigDict(extra="allow")

    category: Literal["other"] = "other"

    @model_validator(mode="after")
    def _finite_extras(self) -> "OtherDetails":
        for key, value in (self.model_extra or {}).items():
            if _has_non_finite(value):
                raise ValueError(f"{key} must be a finite number")
        return self


AchievementDetails = Annotated[
    Union[
        CompetitionDetails,
        PublicationDetails,
        OrganizationDetails,
        CertificationDetails,
        AcademicDetails,
        OtherDetails,
    ],
    Field(discriminator="category"),
]

_DETAILS_BY_CATEGORY: dict[AchievementCategory, type[_Details]] = {
    AchievementCategory.COMPETITION: CompetitionDetails,
    AchievementCategory.PUBLICATION: PublicationDetails,
    AchievementCategory.ORGANIZATION: OrganizationDetails,
    AchievementCategory.CERTIFICATION: CertificationDetails,
    AchievementCategory.ACADEMIC: AcademicDetails,
    AchievementCategory.OTHER: OtherDetails,
}


class Attachment(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    file_name: str = Field(min_length=1)
    file_url: str = Field(min_length=1)
    file_type: str = "application/pdf"
    uploaded_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def _pdf_only(self) -> "Attachment":
        if self.file_type.strip().lower() != "application/pdf" and not self.file_name.lower().endswith(".pdf"):
            raise ValueError("only PDF attachments are accepted")
        return self


class AchievementPayload(BaseModel):
    """Validated body of a create request; details already narrowed to the category variant."""

    model_config = ConfigDict(allow_inf_nan=False)

    category: AchievementCategory
    title: str
    description: str
    details: AchievementDetails
    attachments: list[Attachment] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    points: float | None = Field(default=None, ge=0)


class AchievementContent(AchievementPayload):
    id: str
    student_id: str
    created_at: datetime
    updated_at: datetime


class CreateAchievementRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    category: str = Field(default="", validation_alias="achievement_type")
    title: str = ""
    description: str = ""
    details: dict[str, Any] | None = None
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    points: float | None = None


class ReviewRequest(BaseModel):
    status: str
    rejection_note: str | None = None


def _error_details(exc: ValidationError) -> dict[str, Any]:
    return {
        "errors": [
            {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
    }


def build_achievement_payload(raw: CreateAchievementRequest | dict[str, Any]) -> AchievementPayload:
    if isinstance(raw, CreateAchievementRequest):
        request = raw
    else:
        try:
            request = CreateAchievementRequest.model_validate(raw)
        except ValidationError as exc:
            raise ValidationFailed("invalid achievement payload", details=_error_details(exc)) from None
    category_raw = request.category.strip().lower()
    title = request.title.strip()
    description = request.description.strip()
    if not category_raw or not title or not description:
        raise ValidationFailed("category, title and description are required")
    try:
        category = AchievementCategory(category_raw)
    except ValueError:
        raise ValidationFailed(f"unknown achievement category: {category_raw}") from None

    details_raw = dict(request.details or {})
    details_raw.pop("category", None)
    try:
        details = _DETAILS_BY_CATEGORY[category].model_validate({**details_raw, "category": category.value})
        return AchievementPayload(
            category=category,
            title=title,
            description=description,
            details=details,
            attachments=[Attachment.model_validate(item) for item in request.attachments],
            tags=[tag.strip() for tag in request.tags if tag and tag.strip()],
            points=request.points,
        )
    except ValidationError as exc:
        raise ValidationFailed("invalid achievement payload", details=_error_details(exc)) from None


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

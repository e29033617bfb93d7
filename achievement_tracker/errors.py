from __future__ import annotations

from typing import Any


class ApiError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        error_class: str,
        retryable: bool,
        http_status: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.error_class = error_class
        self.retryable = retryable
        self.http_status = http_status
        self.details = details


class ValidationFailed(ApiError):
    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            code="REQ_VALIDATION_FAILED",
            message=message,
            error_class="validation",
            retryable=False,
            http_status=400,
            details=details,
        )


class NotFoundOrForbiddenOrWrongState(ApiError):
    """Guard failure; never says whether the row is missing, foreign, or in another state."""

    MESSAGE = "achievement cannot be processed"

    def __init__(self) -> None:
        super().__init__(
            code="ACHIEVEMENT_NOT_PROCESSABLE",
            message=self.MESSAGE,
            error_class="business_rule",
            retryable=False,
            http_status=404,
        )


class Unauthorized(ApiError):
    def __init__(self, message: str = "role not permitted for this action") -> None:
        super().__init__(
            code="AUTH_FORBIDDEN",
            message=message,
            error_class="security_sensitive",
            retryable=False,
            http_status=403,
        )


class StoreUnavailable(ApiError):
    def __init__(self, message: str = "store unavailable; outcome unknown") -> None:
        super().__init__(
            code="STORE_UNAVAILABLE",
            message=message,
            error_class="transient",
            retryable=True,
            http_status=503,
        )

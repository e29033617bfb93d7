from __future__ import annotations

import os
from dataclasses import dataclass

import jwt

from achievement_tracker.errors import ApiError
from achievement_tracker.models import Actor


def _split_csv(raw: str) -> list[str]:
    return [x.strip() for x in raw.split(",") if x.strip()]


def _unauthorized(message: str) -> ApiError:
    return ApiError(
        code="AUTH_UNAUTHORIZED",
        message=message,
        error_class="security_sensitive",
        retryable=False,
        http_status=401,
    )


def redact_sensitive(value: object) -> object:
    sensitive_keys = {"authorization", "token", "secret", "password", "api_key", "apikey", "access_token"}
    if isinstance(value, dict):
        redacted: dict[str, object] = {}
        for key, item in value.items():
            if str(key).lower() in sensitive_keys:
                redacted[str(key)] = "***REDACTED***"
            else:
                redacted[str(key)] = redact_sensitive(item)
        return redacted
    if isinstance(value, list):
        return [redact_sensitive(x) for x in value]
    if isinstance(value, str):
        if len(value) >= 24 and any(k in value.lower() for k in ("bearer ", "token")):
            return "***REDACTED***"
    return value


@dataclass
class JwtSecurityConfig:
    enabled: bool
    issuer: str
    audience: str
    shared_secret: str
    required_claims: list[str]

    @classmethod
    def from_env(cls) -> "JwtSecurityConfig":
        issuer = os.environ.get("JWT_ISSUER", "").strip()
        audience = os.environ.get("JWT_AUDIENCE", "").strip()
        shared_secret = os.environ.get("JWT_SHARED_SECRET", "").strip()
        return cls(
            enabled=bool(issuer or audience or shared_secret),
            issuer=issuer,
            audience=audience,
            shared_secret=shared_secret,
            required_claims=_split_csv(os.environ.get("JWT_REQUIRED_CLAIMS", "sub,exp")),
        )


def parse_and_validate_bearer_token(*, authorization: str | None, cfg: JwtSecurityConfig) -> Actor:
    if not authorization:
        raise _unauthorized("missing Authorization bearer token")
    prefix = "Bearer "
    if not authorization.startswith(prefix):
        raise _unauthorized("invalid Authorization header")
    token = authorization[len(prefix) :].strip()
    if not token:
        raise _unauthorized("empty bearer token")
    if not cfg.shared_secret:
        raise _unauthorized("jwt shared secret not configured")

    options = {"require": list(cfg.required_claims), "verify_aud": bool(cfg.audience)}
    try:
        claims = jwt.decode(
            token,
            cfg.shared_secret,
            algorithms=["HS256"],
            audience=cfg.audience or None,
            issuer=cfg.issuer or None,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        raise _unauthorized("token expired") from None
    except jwt.ImmatureSignatureError:
        raise _unauthorized("token not yet valid") from None
    except jwt.InvalidIssuerError:
        raise _unauthorized("jwt issuer mismatch") from None
    except jwt.InvalidAudienceError:
        raise _unauthorized("jwt audience mismatch") from None
    except jwt.MissingRequiredClaimError as exc:
        raise _unauthorized(f"missing required claim: {exc.claim}") from None
    except jwt.InvalidSignatureError:
        raise _unauthorized("invalid token signature") from None
    except jwt.InvalidTokenError:
        raise _unauthorized("invalid token") from None

    subject = str(claims.get("sub") or "").strip()
    if not subject:
        raise _unauthorized("missing subject claim")
    return Actor(subject=subject, claims=claims)

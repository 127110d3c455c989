from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions.

    Each subclass carries the HTTP status an outer layer should map it to
    and a stable machine-readable ``error_code``:
    - unauthorized / invalid_token / token_expired / token_revoked (401)
    - token_reuse_detected (401, the whole login chain was revoked)
    - forbidden (403)
    - not_found (404)
    - validation_error (400)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class InvalidTokenError(AuthenticationError):
    """Bad signature, wrong token type or malformed claims."""
    error_code = "invalid_token"


class TokenExpiredError(AuthenticationError):
    """Token signature is valid but its ``exp`` has passed."""
    error_code = "token_expired"


class TokenRevokedError(AuthenticationError):
    """Access token was blacklisted by an explicit logout."""
    error_code = "token_revoked"


class SecurityBreachError(AuthenticationError):
    """A refresh token was presented after it had already been rotated away.

    The token family has been revoked by the time this is raised; callers
    should force a full re-authentication and warn the user.
    """
    error_code = "token_reuse_detected"


class ForbiddenError(ServiceError):
    """Access denied - insufficient permissions (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "InvalidTokenError",
    "TokenExpiredError",
    "TokenRevokedError",
    "SecurityBreachError",
    "ForbiddenError",
    "NotFoundError",
]

from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions.

    Each class carries a stable ``error_code`` and the ``status_code`` the HTTP
    adapter answers with. Services only raise; translating to a response is
    done by ``storeauth.api.error_handling``.
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


class BadRequestError(ValidationError):
    """Alias for ValidationError - request is malformed or invalid."""
    pass


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class ForbiddenError(ServiceError):
    """Access denied - insufficient permissions (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"


# Account and token taxonomy


class IdentityNotFound(NotFoundError):
    """No identity matches the given username."""


class EmailNotFound(IdentityNotFound):
    """No identity owns the given email."""


class UsernameExists(ConflictError):
    """Another identity already owns the username."""


class EmailExists(ConflictError):
    """Another identity already owns the email."""


class AuthenticationFailed(AuthenticationError):
    """Presented password does not match the stored hash."""


class AccountLocked(AuthenticationError):
    error_code = "account_locked"


class AccountDisabled(AuthenticationError):
    error_code = "account_disabled"


class UnknownRole(ValidationError):
    """Role name is not one of the fixed roles."""


class TokenInvalid(AuthenticationError):
    """Token is malformed, badly signed, or issued for someone else."""


class TokenExpired(TokenInvalid):
    error_code = "token_expired"


class Forbidden(ForbiddenError):
    """Principal lacks the authority an operation requires."""


__all__ = [
    "ServiceError",
    "ValidationError",
    "BadRequestError",
    "AuthenticationError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "IdentityNotFound",
    "EmailNotFound",
    "UsernameExists",
    "EmailExists",
    "AuthenticationFailed",
    "AccountLocked",
    "AccountDisabled",
    "UnknownRole",
    "TokenInvalid",
    "TokenExpired",
    "Forbidden",
]

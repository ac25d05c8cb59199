from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from typing import Any, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "validation_error",
    "conflict",
    "account_locked",
    "account_disabled",
    "token_expired",
    "server_error",
})


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")
_USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.-]+$")


def _validate_email(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("email must be a string")
    normalized = unicodedata.normalize("NFKC", value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64 or not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


def _validate_username(value: str) -> str:
    value = value.strip()
    if not value or len(value) > 64:
        raise ValueError("username must be 1-64 characters")
    if not _USERNAME_PATTERN.match(value):
        raise ValueError(
            "username must contain only letters, digits, dots, underscores, and hyphens"
        )
    return value


class RegisterRequest(BaseModel):
    first_name: str = Field(..., max_length=100)
    last_name: str = Field(..., max_length=100)
    username: str
    email: str

    @field_validator("email")
    @classmethod
    def _validate_register_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("username")
    @classmethod
    def _validate_register_username(cls, value: str) -> str:
        return _validate_username(value)


class LoginRequest(BaseModel):
    username: str = Field(..., max_length=64)
    password: str = Field(..., max_length=128)

    @field_validator("username")
    @classmethod
    def _strip_login_username(cls, value: str) -> str:
        return value.strip()


class AdminUserRequest(BaseModel):
    first_name: str = Field(..., max_length=100)
    last_name: str = Field(..., max_length=100)
    username: str
    email: str
    role: str = Field(..., max_length=32)
    is_active: bool = True
    is_not_locked: bool = True

    @field_validator("email")
    @classmethod
    def _validate_admin_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("username")
    @classmethod
    def _validate_admin_username(cls, value: str) -> str:
        return _validate_username(value)


class UpdateUserRequest(AdminUserRequest):
    current_username: str = Field(..., max_length=64)


class UserResponse(BaseModel):
    id: int
    user_id: str
    first_name: str
    last_name: str
    username: str
    email: str
    profile_image_url: Optional[str] = None
    last_login_date: Optional[datetime] = None
    last_login_date_display: Optional[datetime] = None
    join_date: datetime
    role: str
    authorities: List[str]
    is_active: bool
    is_not_locked: bool


class UserListResponse(BaseModel):
    items: List[UserResponse]


class MessageResponse(BaseModel):
    message: str

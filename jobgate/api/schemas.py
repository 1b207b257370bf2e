from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from typing import Any, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from jobgate.storage.models import Identity

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "invalid_credentials",
    "invalid_token",
    "forbidden",
    "account_disabled",
    "federated_account",
    "not_found",
    "rate_limited",
    "validation_error",
    "conflict",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with a stable, machine-readable code."""

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
    """Uniform response wrapper for every /v1 endpoint."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


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


class RegisterRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=6, max_length=100)
    name: str = Field(..., min_length=2, max_length=120)
    role: Literal["seeker", "employer"] = "seeker"

    @field_validator("email")
    @classmethod
    def _validate_register_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if len(stripped) < 2:
            raise ValueError("name must be at least 2 characters")
        return stripped


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=1, max_length=100)

    @field_validator("email")
    @classmethod
    def _validate_login_email(cls, value: str) -> str:
        return _validate_email(value)


class UserResponse(BaseModel):
    id: str
    email: str
    name: str
    role: str
    is_active: bool
    has_password: bool
    created_at: datetime

    @classmethod
    def from_identity(cls, identity: Identity) -> "UserResponse":
        return cls(
            id=identity.id,
            email=identity.email,
            name=identity.name,
            role=identity.role.value,
            is_active=identity.active,
            has_password=identity.has_local_secret,
            created_at=identity.created_at,
        )


class AuthResponse(BaseModel):
    user: UserResponse


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class UserListResponse(BaseModel):
    items: List[UserResponse]
    pagination: Pagination


class AdminUpdateUserRequest(BaseModel):
    role: Optional[Literal["seeker", "employer", "admin"]] = None
    is_active: Optional[bool] = None

    @model_validator(mode="after")
    def _require_change(self) -> "AdminUpdateUserRequest":
        if self.role is None and self.is_active is None:
            raise ValueError("provide role and/or is_active")
        return self

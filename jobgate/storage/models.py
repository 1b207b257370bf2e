from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class Role(str, Enum):
    """Authorization roles, least privileged first."""

    SEEKER = "seeker"
    EMPLOYER = "employer"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: "Role | str") -> "Role":
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


DEFAULT_ROLE = Role.SEEKER
# Roles a visitor may pick for themselves at registration
SELF_SERVICE_ROLES = frozenset({Role.SEEKER, Role.EMPLOYER})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass
class Identity:
    id: str
    email: str
    name: str
    secret_hash: Optional[str] = None
    role: Role = DEFAULT_ROLE
    active: bool = True
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def has_local_secret(self) -> bool:
        return bool(self.secret_hash)

    @property
    def is_federated_only(self) -> bool:
        return not self.secret_hash

from __future__ import annotations

import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from jobgate.logging import get_logger
from jobgate.storage.errors import ConstraintViolation
from jobgate.storage.models import DEFAULT_ROLE, Identity, Role, normalize_email


class MemoryStore:
    """In-process identity store used for tests and local development."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.identities: Dict[str, Identity] = {}
        # email -> id; emails are stored normalized
        self._email_index: Dict[str, str] = {}
        # RLock so list/count helpers can nest inside other locked calls
        self._data_lock = threading.RLock()

    def verify_connection(self) -> None:
        return None

    def create_identity(
        self,
        email: str,
        name: str,
        *,
        secret_hash: Optional[str] = None,
        role: Role | str = DEFAULT_ROLE,
        active: bool = True,
    ) -> Identity:
        normalized = normalize_email(email)
        with self._data_lock:
            if normalized in self._email_index:
                raise ConstraintViolation("email already exists", {"field": "email"})
            identity = Identity(
                id=str(uuid.uuid4()),
                email=normalized,
                name=name,
                secret_hash=secret_hash or None,
                role=Role.parse(role),
                active=active,
            )
            self.identities[identity.id] = identity
            self._email_index[normalized] = identity.id
            return identity

    def get_identity(self, identity_id: str) -> Optional[Identity]:
        with self._data_lock:
            return self.identities.get(identity_id)

    def get_identity_by_email(self, email: str) -> Optional[Identity]:
        with self._data_lock:
            identity_id = self._email_index.get(normalize_email(email))
            return self.identities.get(identity_id) if identity_id else None

    def update_identity(
        self,
        identity_id: str,
        *,
        role: Role | str | None = None,
        active: Optional[bool] = None,
        name: Optional[str] = None,
        secret_hash: Optional[str] = None,
    ) -> Optional[Identity]:
        with self._data_lock:
            identity = self.identities.get(identity_id)
            if not identity:
                return None
            if role is not None:
                identity.role = Role.parse(role)
            if active is not None:
                identity.active = active
            if name is not None:
                identity.name = name
            if secret_hash:
                identity.secret_hash = secret_hash
            identity.updated_at = datetime.now(timezone.utc)
            return identity

    def _filtered(self, role: Role | str | None, search: Optional[str]) -> List[Identity]:
        wanted = Role.parse(role) if role is not None else None
        needle = search.strip().lower() if search else None
        results = []
        for identity in self.identities.values():
            if wanted is not None and identity.role != wanted:
                continue
            if needle and needle not in identity.email and needle not in identity.name.lower():
                continue
            results.append(identity)
        return results

    def list_identities(
        self,
        *,
        role: Role | str | None = None,
        search: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Identity]:
        with self._data_lock:
            results = sorted(
                self._filtered(role, search), key=lambda i: i.created_at, reverse=True
            )
            return results[offset : offset + limit]

    def count_identities(
        self, *, role: Role | str | None = None, search: Optional[str] = None
    ) -> int:
        with self._data_lock:
            return len(self._filtered(role, search))

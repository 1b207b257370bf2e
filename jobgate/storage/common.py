"""Storage contract shared by the memory and postgres identity stores.

The service layer depends only on :class:`IdentityStore`; both backends
normalize email the same way and raise :class:`ConstraintViolation` on a
duplicate email.
"""

from __future__ import annotations

from typing import List, Optional, Protocol

from jobgate.storage.models import Identity, Role


class IdentityStore(Protocol):
    def create_identity(
        self,
        email: str,
        name: str,
        *,
        secret_hash: Optional[str] = None,
        role: Role | str = ...,
        active: bool = True,
    ) -> Identity: ...

    def get_identity(self, identity_id: str) -> Optional[Identity]: ...

    def get_identity_by_email(self, email: str) -> Optional[Identity]: ...

    def update_identity(
        self,
        identity_id: str,
        *,
        role: Role | str | None = None,
        active: Optional[bool] = None,
        name: Optional[str] = None,
        secret_hash: Optional[str] = None,
    ) -> Optional[Identity]: ...

    def list_identities(
        self,
        *,
        role: Role | str | None = None,
        search: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Identity]: ...

    def count_identities(
        self, *, role: Role | str | None = None, search: Optional[str] = None
    ) -> int: ...

    def verify_connection(self) -> None: ...

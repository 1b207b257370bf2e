from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

from jobgate.logging import get_logger
from jobgate.service.errors import (
    AccountDisabled,
    ConflictError,
    FederatedAccountConflict,
    InvalidCredentials,
    NotFoundError,
    Unauthorized,
    ValidationError,
)
from jobgate.service.passwords import CredentialVerifier
from jobgate.service.session_guard import SessionGuard
from jobgate.service.tokens import TokenCodec, TokenPair
from jobgate.storage.common import IdentityStore
from jobgate.storage.errors import ConstraintViolation
from jobgate.storage.models import (
    DEFAULT_ROLE,
    SELF_SERVICE_ROLES,
    Identity,
    Role,
    normalize_email,
)

logger = get_logger(__name__)

# One message for unknown email and wrong secret so neither can be enumerated
INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"


@dataclass(frozen=True)
class AuthOutcome:
    identity: Identity
    tokens: TokenPair


class AuthService:
    """Local registration, login, refresh and identity administration."""

    def __init__(
        self,
        store: IdentityStore,
        codec: TokenCodec,
        verifier: CredentialVerifier,
        guard: Optional[SessionGuard] = None,
    ) -> None:
        self.store = store
        self.codec = codec
        self.verifier = verifier
        self.guard = guard or SessionGuard(codec, store)

    async def register(
        self,
        email: str,
        secret: str,
        name: str,
        role: Role | str = DEFAULT_ROLE,
    ) -> AuthOutcome:
        try:
            requested_role = Role.parse(role)
        except ValueError:
            raise ValidationError("unknown role", detail={"field": "role"})
        if requested_role not in SELF_SERVICE_ROLES:
            raise ValidationError(
                "role not available for registration", detail={"field": "role"}
            )

        normalized = normalize_email(email)
        existing = self.store.get_identity_by_email(normalized)
        if existing is not None:
            if existing.is_federated_only:
                raise ConflictError(
                    "This email is registered with Google. Please sign in with Google.",
                    detail={"field": "email"},
                )
            raise ConflictError("Email already registered", detail={"field": "email"})

        secret_hash = self.verifier.hash(secret)
        try:
            identity = self.store.create_identity(
                normalized, name.strip(), secret_hash=secret_hash, role=requested_role
            )
        except ConstraintViolation:
            raise ConflictError("Email already registered", detail={"field": "email"})
        logger.info("identity_registered", identity_id=identity.id, role=identity.role.value)
        return AuthOutcome(identity, self.codec.issue_pair(identity.id, identity.role))

    async def login(self, email: str, secret: str) -> AuthOutcome:
        identity = self.store.get_identity_by_email(email)
        if identity is None:
            logger.info("login_failed", reason="unknown_identity")
            raise InvalidCredentials(INVALID_CREDENTIALS_MESSAGE)
        if identity.is_federated_only:
            logger.info("login_failed", reason="federated_only", identity_id=identity.id)
            raise FederatedAccountConflict("This account uses Google login")
        if not self.verifier.verify(secret, identity.secret_hash):
            logger.info("login_failed", reason="secret_mismatch", identity_id=identity.id)
            raise InvalidCredentials(INVALID_CREDENTIALS_MESSAGE)
        if not identity.active:
            logger.info("login_failed", reason="inactive", identity_id=identity.id)
            raise AccountDisabled("Account is disabled")

        if self.verifier.needs_rehash(identity.secret_hash):
            self.store.update_identity(identity.id, secret_hash=self.verifier.hash(secret))
            logger.info("credential_rehashed", identity_id=identity.id)
        logger.info("login_succeeded", identity_id=identity.id)
        return AuthOutcome(identity, self.codec.issue_pair(identity.id, identity.role))

    async def refresh(self, refresh_token: Optional[str]) -> AuthOutcome:
        if not refresh_token:
            raise Unauthorized("no refresh token provided")
        identity, tokens = self.guard.rotate(refresh_token)
        return AuthOutcome(identity, tokens)

    def get_identity(self, identity_id: str) -> Identity:
        identity = self.store.get_identity(identity_id)
        if identity is None:
            raise NotFoundError("user not found", detail={"user_id": identity_id})
        return identity

    def list_identities(
        self,
        *,
        role: Role | str | None = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Identity], int]:
        page = max(1, page)
        limit = min(100, max(1, limit))
        items = self.store.list_identities(
            role=role, search=search, limit=limit, offset=(page - 1) * limit
        )
        total = self.store.count_identities(role=role, search=search)
        return items, total

    async def update_identity(
        self,
        actor_id: str,
        identity_id: str,
        *,
        role: Role | str | None = None,
        active: Optional[bool] = None,
    ) -> Identity:
        if actor_id == identity_id:
            raise ValidationError("Cannot modify your own account")
        updated = self.store.update_identity(
            identity_id,
            role=Role.parse(role) if role is not None else None,
            active=active,
        )
        if updated is None:
            raise NotFoundError("user not found", detail={"user_id": identity_id})
        logger.info(
            "identity_updated",
            actor_id=actor_id,
            identity_id=identity_id,
            role=updated.role.value,
            active=updated.active,
        )
        return updated

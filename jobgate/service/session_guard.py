from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from jobgate.logging import get_logger
from jobgate.service.errors import Forbidden, InvalidToken, Unauthorized
from jobgate.service.tokens import TokenCodec, TokenPair
from jobgate.storage.common import IdentityStore
from jobgate.storage.models import Identity, Role

logger = get_logger(__name__)


@dataclass(frozen=True)
class ResolvedIdentity:
    """Who is calling, as far as authorization is concerned."""

    id: str
    role: Role


@dataclass(frozen=True)
class SessionResolution:
    identity: ResolvedIdentity
    # Set when the refresh path minted a new pair the transport must write
    rotated: Optional[TokenPair] = None


class SessionGuard:
    """Resolves the caller from the access/refresh cookie pair.

    A valid access token is trusted as-is, without touching the store, so a
    role change only takes effect once the access token expires. When the
    access token is missing or invalid, the refresh token is verified, the
    identity is re-read, and a fresh pair is issued with the live role.
    """

    def __init__(self, codec: TokenCodec, store: IdentityStore) -> None:
        self.codec = codec
        self.store = store

    def authenticate(
        self, access_token: Optional[str], refresh_token: Optional[str]
    ) -> SessionResolution:
        if access_token:
            try:
                claims = self.codec.verify_access(access_token)
            except InvalidToken as exc:
                logger.debug("access_rejected", reason=exc.message)
            else:
                return SessionResolution(ResolvedIdentity(id=claims.sub, role=claims.role))

        if not refresh_token:
            raise Unauthorized("no session tokens provided")

        identity, tokens = self.rotate(refresh_token)
        return SessionResolution(
            ResolvedIdentity(id=identity.id, role=identity.role), rotated=tokens
        )

    def rotate(self, refresh_token: str) -> Tuple[Identity, TokenPair]:
        """Exchange a valid refresh token for a new pair bound to the live identity.

        The presented refresh token stays valid until it expires; there is no
        server-side revocation list.
        """
        try:
            claims = self.codec.verify_refresh(refresh_token)
        except InvalidToken as exc:
            logger.info("refresh_rejected", reason=exc.message)
            raise Unauthorized("invalid refresh token", clear_cookies=True)

        identity = self.store.get_identity(claims.sub)
        if identity is None or not identity.active:
            logger.info(
                "refresh_identity_unusable",
                identity_id=claims.sub,
                missing=identity is None,
            )
            raise Unauthorized("invalid identity")

        tokens = self.codec.issue_pair(identity.id, identity.role)
        if identity.role != claims.role:
            logger.info(
                "session_role_refreshed",
                identity_id=identity.id,
                previous_role=claims.role.value,
                role=identity.role.value,
            )
        return identity, tokens


class RoleGate:
    """Restricts an operation to a set of roles. Pure check, no side effects."""

    @staticmethod
    def require(
        identity: Optional[ResolvedIdentity], allowed: Iterable[Role | str]
    ) -> ResolvedIdentity:
        if identity is None:
            raise Unauthorized("authentication required")
        allowed_roles = {Role.parse(role) for role in allowed}
        if identity.role not in allowed_roles:
            raise Forbidden(
                "insufficient role",
                detail={"required": sorted(role.value for role in allowed_roles)},
            )
        return identity

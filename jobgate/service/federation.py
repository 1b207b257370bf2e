from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple, Union
from urllib.parse import urlencode

import httpx

from jobgate.config import Settings
from jobgate.logging import get_logger
from jobgate.service.tokens import TokenCodec, TokenPair
from jobgate.storage.common import IdentityStore
from jobgate.storage.errors import ConstraintViolation
from jobgate.storage.models import DEFAULT_ROLE, Identity, Role, normalize_email
from jobgate.storage.redis_cache import RedisCache

logger = get_logger(__name__)

GOOGLE_PROVIDER = "google"
GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_SCOPE = "openid email profile"

OAUTH_STATE_TTL = timedelta(minutes=10)

# Post-login landing page per role
REDIRECT_PATHS: Dict[Role, str] = {
    Role.SEEKER: "/",
    Role.EMPLOYER: "/dashboard",
    Role.ADMIN: "/admin",
}


def redirect_path_for(role: Role | str) -> str:
    try:
        return REDIRECT_PATHS.get(Role.parse(role), "/")
    except ValueError:
        return "/"


@dataclass(frozen=True)
class FederatedAssertion:
    """Identity claims vouched for by an external provider."""

    email: str
    name: str = ""
    provider: str = GOOGLE_PROVIDER
    subject: Optional[str] = None
    email_verified: bool = True


@dataclass(frozen=True)
class FederationResult:
    identity: Identity
    tokens: TokenPair
    redirect_path: str
    created: bool = False


@dataclass(frozen=True)
class FederationFailure:
    reason: str
    message: str


class FederationBridge:
    """Reconciles a federated assertion with the local identity store.

    Lookup is by normalized email. A matching identity is reused unchanged,
    including one that was registered with a local secret; otherwise a
    secret-less, active identity with the default role is created.
    """

    def __init__(self, store: IdentityStore, codec: TokenCodec) -> None:
        self.store = store
        self.codec = codec

    def complete(
        self, assertion: FederatedAssertion
    ) -> Union[FederationResult, FederationFailure]:
        email = normalize_email(assertion.email or "")
        if not email or "@" not in email:
            logger.warning("federation_missing_email", provider=assertion.provider)
            return FederationFailure("missing_email", "provider did not supply an email")
        if not assertion.email_verified:
            logger.warning("federation_unverified_email", provider=assertion.provider)
            return FederationFailure("unverified_email", "provider email is not verified")

        created = False
        identity = self.store.get_identity_by_email(email)
        if identity is None:
            name = (assertion.name or "").strip() or email.split("@", 1)[0]
            try:
                identity = self.store.create_identity(
                    email, name, secret_hash=None, role=DEFAULT_ROLE, active=True
                )
                created = True
            except ConstraintViolation:
                # Lost a race with a concurrent first login for the same email
                identity = self.store.get_identity_by_email(email)
                if identity is None:
                    raise
            if created:
                logger.info(
                    "federation_identity_created",
                    identity_id=identity.id,
                    provider=assertion.provider,
                )
        elif identity.has_local_secret:
            logger.warning(
                "federation_attached_local_identity",
                identity_id=identity.id,
                provider=assertion.provider,
            )

        if not identity.active:
            logger.info("federation_identity_disabled", identity_id=identity.id)
            return FederationFailure("account_disabled", "account is disabled")

        tokens = self.codec.issue_pair(identity.id, identity.role)
        return FederationResult(
            identity=identity,
            tokens=tokens,
            redirect_path=redirect_path_for(identity.role),
            created=created,
        )


class OAuthStateStore:
    """Single-use OAuth ``state`` values, in Redis when available."""

    def __init__(self, cache: Optional[RedisCache] = None) -> None:
        self.cache = cache
        self._states: Dict[str, Tuple[str, datetime]] = {}
        self._lock = threading.Lock()

    def _purge_expired(self, now: datetime) -> None:
        for state, (_, expires_at) in list(self._states.items()):
            if expires_at <= now:
                self._states.pop(state, None)

    async def issue(self, provider: str) -> str:
        state = uuid.uuid4().hex
        expires_at = datetime.now(timezone.utc) + OAUTH_STATE_TTL
        if self.cache:
            await self.cache.set_oauth_state(state, provider, expires_at)
        else:
            with self._lock:
                self._purge_expired(datetime.now(timezone.utc))
                self._states[state] = (provider, expires_at)
        return state

    async def consume(self, state: str, provider: str) -> bool:
        if not state:
            return False
        if self.cache:
            stored = await self.cache.pop_oauth_state(state)
        else:
            with self._lock:
                stored = self._states.pop(state, None)
        if stored is None:
            return False
        stored_provider, expires_at = stored
        return stored_provider == provider and expires_at > datetime.now(timezone.utc)


class GoogleOAuthClient:
    """Authorization-code flow against Google, producing a FederatedAssertion."""

    def __init__(
        self,
        settings: Settings,
        *,
        states: Optional[OAuthStateStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ) -> None:
        self.settings = settings
        self.states = states or OAuthStateStore()
        self._transport = transport
        self._timeout = timeout
        self._code_registry: Dict[str, dict] = {}

    @property
    def configured(self) -> bool:
        return bool(self.settings.google_client_id and self.settings.google_client_secret)

    async def authorization_url(self) -> str:
        if not self.settings.google_client_id:
            logger.warning("oauth_not_configured", provider=GOOGLE_PROVIDER)
            raise ValueError("Google OAuth is not configured")
        state = await self.states.issue(GOOGLE_PROVIDER)
        params = {
            "client_id": self.settings.google_client_id,
            "redirect_uri": self.settings.google_callback_url,
            "response_type": "code",
            "scope": GOOGLE_SCOPE,
            "state": state,
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    def register_code(self, code: str, userinfo: dict) -> None:
        """Record a userinfo payload for a code, bypassing the network exchange."""

        self._code_registry[code] = userinfo

    @staticmethod
    def _assertion_from_userinfo(userinfo: dict) -> Optional[FederatedAssertion]:
        email = userinfo.get("email")
        if not isinstance(email, str) or not email:
            return None
        verified = userinfo.get("verified_email", userinfo.get("email_verified", True))
        return FederatedAssertion(
            email=email,
            name=userinfo.get("name") or "",
            provider=GOOGLE_PROVIDER,
            subject=str(userinfo.get("id") or userinfo.get("sub") or "") or None,
            email_verified=verified is True or str(verified).lower() == "true",
        )

    async def exchange(self, code: str, state: str) -> Optional[FederatedAssertion]:
        """Validate ``state`` and trade ``code`` for the caller's Google profile.

        Returns ``None`` on any failure; details are logged.
        """
        if not await self.states.consume(state, GOOGLE_PROVIDER):
            logger.warning("oauth_state_invalid", provider=GOOGLE_PROVIDER)
            return None

        registered = self._code_registry.pop(code, None)
        if registered is not None:
            return self._assertion_from_userinfo(registered)

        if not self.configured:
            logger.error("oauth_credentials_missing", provider=GOOGLE_PROVIDER)
            return None

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, follow_redirects=False, transport=self._transport
            ) as client:
                token_response = await client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "client_id": self.settings.google_client_id,
                        "client_secret": self.settings.google_client_secret,
                        "code": code,
                        "redirect_uri": self.settings.google_callback_url,
                        "grant_type": "authorization_code",
                    },
                    headers={"Accept": "application/json"},
                )
                token_response.raise_for_status()
                token_result = token_response.json()
                provider_access = (
                    token_result.get("access_token") if isinstance(token_result, dict) else None
                )
                if not provider_access:
                    logger.error("oauth_no_access_token", provider=GOOGLE_PROVIDER)
                    return None

                userinfo_response = await client.get(
                    GOOGLE_USERINFO_URL,
                    headers={"Authorization": f"Bearer {provider_access}"},
                )
                userinfo_response.raise_for_status()
                userinfo = userinfo_response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "oauth_exchange_http_error",
                provider=GOOGLE_PROVIDER,
                status_code=exc.response.status_code,
            )
            return None
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("oauth_exchange_error", provider=GOOGLE_PROVIDER, error=str(exc))
            return None

        if not isinstance(userinfo, dict):
            logger.error("oauth_userinfo_invalid_format", provider=GOOGLE_PROVIDER)
            return None
        assertion = self._assertion_from_userinfo(userinfo)
        if assertion is None:
            logger.error("oauth_identity_missing_email", provider=GOOGLE_PROVIDER)
            return None
        logger.info("oauth_exchange_success", provider=GOOGLE_PROVIDER)
        return assertion

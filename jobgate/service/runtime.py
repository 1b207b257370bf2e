from __future__ import annotations

import asyncio
import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from jobgate.config import get_settings, reset_settings_cache
from jobgate.logging import get_logger
from jobgate.service.auth import AuthService
from jobgate.service.cookies import CookieTransport
from jobgate.service.federation import FederationBridge, GoogleOAuthClient, OAuthStateStore
from jobgate.service.passwords import CredentialVerifier
from jobgate.service.rate_limit import RateLimiter, build_rate_limiter
from jobgate.service.session_guard import SessionGuard
from jobgate.service.tokens import TokenCodec
from jobgate.storage.memory import MemoryStore
from jobgate.storage.postgres import PostgresStore
from jobgate.storage.redis_cache import RedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a connection URL for logging."""
    if not url:
        return url
    parsed = urlparse(url)
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(parsed._replace(netloc=netloc))


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
            app_env=self.settings.app_env.value,
        )

        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            self.store = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.cache: Optional[RedisCache] = None
        if self.settings.redis_url:
            try:
                cache = RedisCache(self.settings.redis_url)
                cache.verify_connection()
                self.cache = cache
            except Exception as exc:
                if self.settings.is_production:
                    raise RuntimeError(
                        "Redis is configured but unreachable; refusing to run production "
                        "with per-process rate limits and OAuth state"
                    ) from exc
                logger.warning(
                    "redis_disabled_fallback",
                    redis_url=_mask_url_password(self.settings.redis_url),
                    error=str(exc),
                    message="Rate limits and OAuth state are in-memory only",
                )

        self.codec = TokenCodec.from_settings(self.settings)
        self.verifier = CredentialVerifier.from_settings(self.settings)
        self.cookies = CookieTransport.from_settings(
            self.settings,
            access_max_age=self.codec.access_ttl_seconds,
            refresh_max_age=self.codec.refresh_ttl_seconds,
        )
        self.guard = SessionGuard(self.codec, self.store)
        self.auth = AuthService(self.store, self.codec, self.verifier, guard=self.guard)
        self.federation = FederationBridge(self.store, self.codec)
        self.google = GoogleOAuthClient(self.settings, states=OAuthStateStore(self.cache))
        self.rate_limiters: dict[str, RateLimiter] = {
            "login": build_rate_limiter(
                self.settings.login_rate_limit_per_minute, cache=self.cache
            ),
            "register": build_rate_limiter(
                self.settings.register_rate_limit_per_minute, cache=self.cache
            ),
            "oauth": build_rate_limiter(
                self.settings.oauth_rate_limit_per_minute, cache=self.cache
            ),
            "admin": build_rate_limiter(
                self.settings.admin_rate_limit_per_minute, cache=self.cache
            ),
        }

        logger.info(
            "runtime_initialized",
            store_type=store_type,
            redis_enabled=self.cache is not None,
            google_configured=self.google.configured,
            access_ttl_seconds=self.codec.access_ttl_seconds,
            refresh_ttl_seconds=self.codec.refresh_ttl_seconds,
            cookie_secure=self.cookies.policy.secure,
        )

    async def close(self) -> None:
        if self.cache is not None:
            await self.cache.close()
        if isinstance(self.store, PostgresStore):
            self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton (double-checked locking)."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None and runtime.cache is not None:
            try:
                asyncio.run(runtime.cache.close())
            except RuntimeError as exc:
                logger.warning("runtime_reset_cache_close_failed", error=str(exc))
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime

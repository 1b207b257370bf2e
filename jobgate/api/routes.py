from __future__ import annotations

import math
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import RedirectResponse

from jobgate.api.schemas import (
    AdminUpdateUserRequest,
    AuthResponse,
    Envelope,
    LoginRequest,
    Pagination,
    RegisterRequest,
    UserListResponse,
    UserResponse,
)
from jobgate.logging import get_logger
from jobgate.service.errors import Forbidden, RateLimitedError, ServerError
from jobgate.service.federation import FederationFailure
from jobgate.service.runtime import Runtime, get_runtime
from jobgate.service.session_guard import ResolvedIdentity, RoleGate, SessionResolution
from jobgate.storage.models import Role

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def _enforce_rate_limit(
    runtime: Runtime, policy: str, key: str, *, response: Optional[Response] = None
) -> None:
    """Consume one request from ``policy``'s bucket for ``key`` or raise 429."""
    limiter = runtime.rate_limiters[policy]
    decision = await limiter.check(f"{policy}:{key}")
    if response is not None and limiter.capacity > 0:
        response.headers["X-RateLimit-Limit"] = str(limiter.capacity)
        response.headers["X-RateLimit-Remaining"] = str(max(0, decision.remaining))
    if not decision.allowed:
        logger.warning("rate_limited", policy=policy)
        raise RateLimitedError(
            "Too many requests. Please try again later.",
            detail={"retry_after": decision.reset_seconds},
        )


async def get_session(request: Request, response: Response) -> SessionResolution:
    """Resolve the caller from session cookies, rotating them when refreshed."""
    runtime = get_runtime()
    access, refresh = runtime.cookies.read(request.cookies)
    resolution = runtime.guard.authenticate(access, refresh)
    if resolution.rotated is not None:
        runtime.cookies.write(response, resolution.rotated)
    return resolution


async def get_principal(
    resolution: SessionResolution = Depends(get_session),
) -> ResolvedIdentity:
    return resolution.identity


def require_role(*roles: Role | str) -> Callable:
    """Dependency factory: authenticate, then restrict to ``roles``."""

    async def _dependency(
        resolution: SessionResolution = Depends(get_session),
    ) -> ResolvedIdentity:
        try:
            return RoleGate.require(resolution.identity, roles)
        except Forbidden as exc:
            # Cookies set on the dependency response are dropped with the error
            exc.rotated = resolution.rotated
            raise

    return _dependency


@router.post("/auth/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(body: RegisterRequest, request: Request, response: Response):
    """Create a local account and start a session.

    Raises:
        409: If the email is already registered (locally or through Google)
        429: If the per-IP registration rate limit is exceeded
    """
    runtime = get_runtime()
    await _enforce_rate_limit(runtime, "register", _client_ip(request), response=response)
    outcome = await runtime.auth.register(
        email=body.email, secret=body.password, name=body.name, role=body.role
    )
    runtime.cookies.write(response, outcome.tokens)
    return Envelope(
        status="ok", data=AuthResponse(user=UserResponse.from_identity(outcome.identity))
    )


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest, request: Request, response: Response):
    """Authenticate with email and password and set session cookies.

    Raises:
        400: If the account was created through Google and has no password
        401: If the email is unknown or the password is wrong
        403: If the account is disabled
        429: If the rate limit is exceeded
    """
    runtime = get_runtime()
    await _enforce_rate_limit(
        runtime, "login", f"{_client_ip(request)}:{body.email}", response=response
    )
    outcome = await runtime.auth.login(body.email, body.password)
    runtime.cookies.write(response, outcome.tokens)
    return Envelope(
        status="ok", data=AuthResponse(user=UserResponse.from_identity(outcome.identity))
    )


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh_tokens(request: Request, response: Response):
    runtime = get_runtime()
    _, refresh = runtime.cookies.read(request.cookies)
    outcome = await runtime.auth.refresh(refresh)
    runtime.cookies.write(response, outcome.tokens)
    return Envelope(
        status="ok", data=AuthResponse(user=UserResponse.from_identity(outcome.identity))
    )


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(response: Response):
    """Clear both session cookies. Issued tokens are not revoked server-side."""
    get_runtime().cookies.clear(response)
    return Envelope(status="ok", data={"message": "Logged out"})


@router.get("/auth/me", response_model=Envelope, tags=["auth"])
async def me(principal: ResolvedIdentity = Depends(get_principal)):
    runtime = get_runtime()
    identity = runtime.auth.get_identity(principal.id)
    return Envelope(status="ok", data=AuthResponse(user=UserResponse.from_identity(identity)))


@router.get("/auth/google", tags=["auth"])
async def google_start(request: Request):
    """Redirect the browser to Google's consent screen."""
    runtime = get_runtime()
    await _enforce_rate_limit(runtime, "oauth", _client_ip(request))
    try:
        url = await runtime.google.authorization_url()
    except ValueError as exc:
        raise ServerError(str(exc), status_code=503)
    return RedirectResponse(url, status_code=302)


@router.get("/auth/google/callback", tags=["auth"])
async def google_callback(
    request: Request,
    code: Optional[str] = Query(None, max_length=2048),
    state: Optional[str] = Query(None, max_length=128),
    error: Optional[str] = Query(None, max_length=256),
):
    """Finish the Google flow: set cookies and send the browser to its landing page."""
    runtime = get_runtime()
    frontend = runtime.settings.frontend_url.rstrip("/")
    await _enforce_rate_limit(runtime, "oauth", _client_ip(request))

    if error or not code or not state:
        logger.info("oauth_callback_rejected", provider_error=error)
        return RedirectResponse(f"{frontend}/login?error=auth_failed", status_code=302)

    try:
        assertion = await runtime.google.exchange(code, state)
        if assertion is None:
            return RedirectResponse(f"{frontend}/login?error=auth_failed", status_code=302)
        result = runtime.federation.complete(assertion)
    except Exception as exc:
        logger.exception("oauth_callback_failed", exc_info=exc, error_type=type(exc).__name__)
        return RedirectResponse(f"{frontend}/login?error=server_error", status_code=302)

    if isinstance(result, FederationFailure):
        logger.info("oauth_federation_failed", reason=result.reason)
        return RedirectResponse(f"{frontend}/login?error=auth_failed", status_code=302)

    redirect = RedirectResponse(f"{frontend}{result.redirect_path}", status_code=302)
    runtime.cookies.write(redirect, result.tokens)
    return redirect


@router.get("/admin/users", response_model=Envelope, tags=["admin"])
async def admin_list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    role: Optional[Role] = Query(None),
    search: Optional[str] = Query(None, max_length=120),
    principal: ResolvedIdentity = Depends(require_role(Role.ADMIN)),
):
    runtime = get_runtime()
    await _enforce_rate_limit(runtime, "admin", principal.id)
    items, total = runtime.auth.list_identities(role=role, search=search, page=page, limit=limit)
    return Envelope(
        status="ok",
        data=UserListResponse(
            items=[UserResponse.from_identity(identity) for identity in items],
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                total_pages=math.ceil(total / limit) if total else 0,
            ),
        ),
    )


@router.patch("/admin/users/{user_id}", response_model=Envelope, tags=["admin"])
async def admin_update_user(
    user_id: str,
    body: AdminUpdateUserRequest,
    principal: ResolvedIdentity = Depends(require_role(Role.ADMIN)),
):
    """Change another identity's role and/or active flag."""
    runtime = get_runtime()
    await _enforce_rate_limit(runtime, "admin", principal.id)
    identity = await runtime.auth.update_identity(
        principal.id, user_id, role=body.role, active=body.is_active
    )
    return Envelope(status="ok", data=UserResponse.from_identity(identity))

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from jobgate.service.tokens import TokenPair


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass pins an HTTP ``status_code`` and a stable ``error_code`` that
    clients can switch on without parsing the message.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class Unauthorized(ServiceError):
    """No usable session (401).

    ``clear_cookies`` asks the transport to expire both session cookies on the
    error response; it is set only when a presented refresh token is invalid.
    """

    status_code = 401
    error_code = "unauthorized"

    def __init__(
        self,
        message: str = "unauthorized",
        *,
        clear_cookies: bool = False,
        detail: Optional[dict] = None,
    ) -> None:
        super().__init__(message, detail=detail)
        self.clear_cookies = clear_cookies


class InvalidCredentials(ServiceError):
    """Unknown email or wrong secret; deliberately indistinguishable (401)."""
    status_code = 401
    error_code = "invalid_credentials"


class InvalidToken(ServiceError):
    """Token failed signature, structure, type or expiry checks (401)."""
    status_code = 401
    error_code = "invalid_token"


class Forbidden(ServiceError):
    """Authenticated, but the role is not allowed (403).

    ``rotated`` holds a pair minted while resolving the caller; the transport
    still writes it on the error response.
    """

    status_code = 403
    error_code = "forbidden"
    rotated: Optional["TokenPair"] = None


class AccountDisabled(ServiceError):
    """Correct credentials for a deactivated identity (403)."""
    status_code = 403
    error_code = "account_disabled"


class FederatedAccountConflict(ServiceError):
    """Secret login attempted on an identity created through federation (400)."""
    status_code = 400
    error_code = "federated_account"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict, e.g. duplicate email (409)."""
    status_code = 409
    error_code = "conflict"


class RateLimitedError(ServiceError):
    """Rate limit exceeded (429)."""
    status_code = 429
    error_code = "rate_limited"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


__all__ = [
    "ServiceError",
    "ValidationError",
    "Unauthorized",
    "InvalidCredentials",
    "InvalidToken",
    "Forbidden",
    "AccountDisabled",
    "FederatedAccountConflict",
    "NotFoundError",
    "ConflictError",
    "RateLimitedError",
    "ServerError",
]

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import math
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from jobgate.config import Settings
from jobgate.logging import get_logger
from jobgate.service.errors import InvalidToken
from jobgate.storage.models import Role

logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"

DEFAULT_ACCESS_TTL_SECONDS = 15 * 60
DEFAULT_REFRESH_TTL_SECONDS = 7 * 24 * 60 * 60

_DURATION_PATTERN = re.compile(r"^(\d+)(ms|s|m|h|d|w|y)$", re.IGNORECASE)
_UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
    "w": 7 * 24 * 60 * 60,
    "y": int(365.25 * 24 * 60 * 60),
}


def parse_duration(value: Union[int, str, None], default: int) -> int:
    """Convert a lifetime setting into whole seconds.

    Accepts an int, a digit string (seconds) or ``<n><unit>`` with unit one of
    ms/s/m/h/d/w/y, case-insensitive. Anything else, including non-positive
    results, yields ``default``.
    """
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if value > 0 else default
    if not isinstance(value, str):
        return default
    raw = value.strip()
    if raw.isdigit():
        seconds = int(raw)
        return seconds if seconds > 0 else default
    match = _DURATION_PATTERN.match(raw)
    if not match:
        return default
    amount, unit = int(match.group(1)), match.group(2).lower()
    seconds = amount // 1000 if unit == "ms" else amount * _UNIT_SECONDS[unit]
    return seconds if seconds > 0 else default


@dataclass(frozen=True)
class TokenClaims:
    sub: str
    role: Role
    kind: str
    issued_at: int
    expires_at: int


@dataclass(frozen=True)
class TokenPair:
    access: str
    refresh: str


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not isinstance(value, float) or math.isfinite(value)


class TokenCodec:
    """Issues and verifies HS256 access/refresh tokens.

    Each kind is signed with its own secret and carries ``typ`` in the
    payload, so a refresh token never verifies as an access token and vice
    versa.
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        *,
        access_ttl_seconds: int = DEFAULT_ACCESS_TTL_SECONDS,
        refresh_ttl_seconds: int = DEFAULT_REFRESH_TTL_SECONDS,
        leeway_seconds: int = 0,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if not access_secret or not refresh_secret:
            raise ValueError("token signing secrets must be non-empty")
        self._secrets = {
            ACCESS: access_secret.encode(),
            REFRESH: refresh_secret.encode(),
        }
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self.leeway_seconds = max(0, leeway_seconds)
        self._clock = clock or time.time

    @classmethod
    def from_settings(
        cls, settings: Settings, *, clock: Optional[Callable[[], float]] = None
    ) -> "TokenCodec":
        return cls(
            settings.jwt_access_secret or "",
            settings.jwt_refresh_secret or "",
            access_ttl_seconds=parse_duration(
                settings.jwt_access_expires, DEFAULT_ACCESS_TTL_SECONDS
            ),
            refresh_ttl_seconds=parse_duration(
                settings.jwt_refresh_expires, DEFAULT_REFRESH_TTL_SECONDS
            ),
            clock=clock,
        )

    def _sign(self, kind: str, signing_input: str) -> str:
        digest = hmac.new(self._secrets[kind], signing_input.encode(), hashlib.sha256).digest()
        return _encode_segment(digest)

    def _encode(self, kind: str, identity_id: str, role: Role | str) -> str:
        if not identity_id:
            raise ValueError("identity_id is required")
        now = int(self._clock())
        ttl = self.access_ttl_seconds if kind == ACCESS else self.refresh_ttl_seconds
        payload = {
            "sub": str(identity_id),
            "role": Role.parse(role).value,
            "typ": kind,
            "iat": now,
            "exp": now + ttl,
        }
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = _encode_segment(json.dumps(header, separators=(",", ":")).encode())
        payload_enc = _encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(kind, signing_input)}"

    def _decode(self, kind: str, token: str) -> TokenClaims:
        if not token or not isinstance(token, str):
            raise InvalidToken("token missing")
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            raise InvalidToken("malformed token")

        # Pin the algorithm; never trust the header to pick one
        try:
            header = json.loads(_decode_segment(header_b64))
        except (ValueError, TypeError):
            raise InvalidToken("malformed token header")
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning("jwt_invalid_algorithm", kind=kind)
            raise InvalidToken("unsupported token algorithm")

        expected_sig = self._sign(kind, f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            raise InvalidToken("bad token signature")

        try:
            payload: Any = json.loads(_decode_segment(payload_b64))
        except (ValueError, TypeError):
            raise InvalidToken("malformed token payload")
        if not isinstance(payload, dict):
            raise InvalidToken("malformed token payload")
        if payload.get("typ") != kind:
            raise InvalidToken("wrong token type")

        sub = payload.get("sub")
        if not isinstance(sub, str) or not sub:
            raise InvalidToken("token subject missing")
        try:
            role = Role.parse(payload.get("role"))
        except ValueError:
            raise InvalidToken("token role invalid")

        exp = payload.get("exp")
        iat = payload.get("iat", 0)
        if not _is_finite_number(exp):
            raise InvalidToken("token expiry missing")
        if self._clock() >= exp + self.leeway_seconds:
            raise InvalidToken("token expired")
        return TokenClaims(
            sub=sub,
            role=role,
            kind=kind,
            issued_at=int(iat) if _is_finite_number(iat) else 0,
            expires_at=int(exp),
        )

    def issue_access(self, identity_id: str, role: Role | str) -> str:
        return self._encode(ACCESS, identity_id, role)

    def issue_refresh(self, identity_id: str, role: Role | str) -> str:
        return self._encode(REFRESH, identity_id, role)

    def issue_pair(self, identity_id: str, role: Role | str) -> TokenPair:
        return TokenPair(
            access=self.issue_access(identity_id, role),
            refresh=self.issue_refresh(identity_id, role),
        )

    def verify_access(self, token: str) -> TokenClaims:
        return self._decode(ACCESS, token)

    def verify_refresh(self, token: str) -> TokenClaims:
        return self._decode(REFRESH, token)

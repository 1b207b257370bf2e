from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Mapping, Optional, Tuple

from fastapi import Response

from jobgate.config import Settings
from jobgate.service.tokens import (
    DEFAULT_ACCESS_TTL_SECONDS,
    DEFAULT_REFRESH_TTL_SECONDS,
    TokenPair,
)

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"


@dataclass(frozen=True)
class CookiePolicy:
    secure: bool = False
    access_max_age: int = DEFAULT_ACCESS_TTL_SECONDS
    refresh_max_age: int = DEFAULT_REFRESH_TTL_SECONDS
    path: str = "/"

    @property
    def samesite(self) -> Literal["none", "lax"]:
        # Cross-site delivery needs SameSite=None, which browsers only honor with Secure
        return "none" if self.secure else "lax"


class CookieTransport:
    """Moves the token pair between HTTP responses and requests as httpOnly cookies."""

    def __init__(self, policy: CookiePolicy) -> None:
        self.policy = policy

    @classmethod
    def from_settings(
        cls, settings: Settings, *, access_max_age: int, refresh_max_age: int
    ) -> "CookieTransport":
        return cls(
            CookiePolicy(
                secure=settings.cookie_secure_flag,
                access_max_age=access_max_age,
                refresh_max_age=refresh_max_age,
            )
        )

    def write(self, response: Response, tokens: TokenPair) -> None:
        policy = self.policy
        response.set_cookie(
            ACCESS_COOKIE,
            tokens.access,
            max_age=policy.access_max_age,
            httponly=True,
            secure=policy.secure,
            samesite=policy.samesite,
            path=policy.path,
        )
        response.set_cookie(
            REFRESH_COOKIE,
            tokens.refresh,
            max_age=policy.refresh_max_age,
            httponly=True,
            secure=policy.secure,
            samesite=policy.samesite,
            path=policy.path,
        )

    def clear(self, response: Response) -> None:
        for name in (ACCESS_COOKIE, REFRESH_COOKIE):
            response.delete_cookie(
                name,
                path=self.policy.path,
                secure=self.policy.secure,
                httponly=True,
                samesite=self.policy.samesite,
            )

    @staticmethod
    def read(cookies: Mapping[str, str]) -> Tuple[Optional[str], Optional[str]]:
        return cookies.get(ACCESS_COOKIE) or None, cookies.get(REFRESH_COOKIE) or None

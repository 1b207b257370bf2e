from __future__ import annotations

from typing import Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from jobgate.config import Settings
from jobgate.logging import get_logger

logger = get_logger(__name__)


class CredentialVerifier:
    """Salted argon2id hashing for local secrets.

    Identities created through federation carry no hash; verifying against
    them is always ``False`` and does no hashing work.
    """

    def __init__(self, *, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 4) -> None:
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "CredentialVerifier":
        return cls(
            time_cost=settings.password_hash_time_cost,
            memory_cost=settings.password_hash_memory_cost,
        )

    def hash(self, secret: str) -> str:
        if not secret:
            raise ValueError("secret must be non-empty")
        return self._hasher.hash(secret)

    def verify(self, secret: str, stored_hash: Optional[str]) -> bool:
        if not stored_hash:
            return False
        if not secret:
            return False
        try:
            return self._hasher.verify(stored_hash, secret)
        except VerifyMismatchError:
            return False
        except (InvalidHash, VerificationError):
            logger.warning("credential_hash_unreadable")
            return False

    def needs_rehash(self, stored_hash: Optional[str]) -> bool:
        if not stored_hash:
            return False
        try:
            return self._hasher.check_needs_rehash(stored_hash)
        except InvalidHash:
            return False

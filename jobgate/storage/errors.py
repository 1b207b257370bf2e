from __future__ import annotations

from typing import Any, Dict, Optional


class StorageError(Exception):
    """Base class for identity-store failures surfaced to the service layer."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ConstraintViolation(StorageError):
    """A uniqueness constraint rejected the write (duplicate email)."""

    @property
    def field(self) -> Optional[str]:
        return self.detail.get("field")


__all__ = ["StorageError", "ConstraintViolation"]

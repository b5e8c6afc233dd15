from __future__ import annotations

from typing import Any, Dict, Optional


class StorageError(Exception):
    """Base for errors raised by the store backends; ``detail`` names the offending keys."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ConstraintViolation(StorageError):
    """A name is already taken in its scope, or a parent row (workspace,
    project, folder, endpoint, request log) does not exist."""


__all__ = ["ConstraintViolation", "StorageError"]

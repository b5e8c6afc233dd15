from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Failure raised by a management route and rendered as the error envelope.

    ``status_code`` picks the HTTP status, ``error_code`` the stable
    machine-readable code in ``error.code``. Mock traffic never raises these:
    the stateful handler writes its own status and body into the capture.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[dict] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(ServiceError):
    """Unknown project, stateful endpoint or request log."""

    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    status_code = 409
    error_code = "conflict"


class ServerError(ServiceError):
    status_code = 500
    error_code = "server_error"


__all__ = ["ConflictError", "NotFoundError", "ServerError", "ServiceError"]

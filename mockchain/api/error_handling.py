from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from mockchain.api.schemas import Envelope, ErrorBody
from mockchain.logging import get_logger
from mockchain.service.errors import ServiceError
from mockchain.storage.errors import ConstraintViolation

logger = get_logger(__name__)

_CODES_BY_STATUS = {
    400: "validation_error",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    409: "conflict",
    422: "validation_error",
}


def _error_code_for_status(status_code: int) -> str:
    return _CODES_BY_STATUS.get(status_code, "server_error")


def _error_response(
    status_code: int,
    message: str,
    details: dict | list | None = None,
    code: str | None = None,
) -> JSONResponse:
    body = ErrorBody(code=code or _error_code_for_status(status_code), message=message, details=details)
    return JSONResponse(
        status_code=status_code,
        content=Envelope(status="error", error=body).model_dump(),
    )


def _log_failure(event: str, request: Request, status_code: int, **fields) -> None:
    log = logger.error if status_code >= 500 else logger.warning
    log(event, path=request.url.path, method=request.method, status_code=status_code, **fields)


def register_exception_handlers(app: FastAPI) -> None:
    """Render management-route failures as the error envelope.

    The universal mock route never reaches these for handled outcomes; the
    stateful handler answers with the endpoint's configured responses.
    """

    @app.exception_handler(ConstraintViolation)
    async def constraint_violation(request: Request, exc: ConstraintViolation):
        _log_failure("constraint_violation", request, 409, message=exc.message, detail=exc.detail)
        return _error_response(409, exc.message, exc.detail, code="conflict")

    @app.exception_handler(ServiceError)
    async def service_error(request: Request, exc: ServiceError):
        _log_failure(
            "service_error",
            request,
            exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
            detail=exc.detail,
        )
        return _error_response(exc.status_code, exc.message, exc.detail, code=exc.error_code)

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError):
        problems = [
            {"loc": list(err.get("loc", [])), "msg": str(err.get("msg", ""))}
            for err in exc.errors()
        ]
        _log_failure("request_validation_failed", request, 400, errors=problems)
        return _error_response(400, "invalid request", problems, code="validation_error")

    @app.exception_handler(HTTPException)
    async def http_exception(request: Request, exc: HTTPException):
        if exc.status_code >= 500:
            _log_failure("http_error", request, exc.status_code, detail=exc.detail)
        if isinstance(exc.detail, str):
            return _error_response(exc.status_code, exc.detail)
        details = exc.detail if isinstance(exc.detail, (dict, list)) else None
        return _error_response(exc.status_code, "http error", details)

    @app.exception_handler(Exception)
    async def uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        )
        return _error_response(500, "internal server error", code="server_error")

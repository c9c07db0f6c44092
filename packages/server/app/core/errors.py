"""
Error taxonomy and the FastAPI handlers that render it.

Every failure leaves the API in the same envelope:
    {"success": false, "error": {"code": ..., "message": ..., "details": ...}}
"""

from __future__ import annotations

from typing import Any, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from keystone_shared.schemas.common import ErrorCode

log = structlog.get_logger()


class ConfigurationError(RuntimeError):
    """Required configuration is missing. Raised at startup, never per request."""


class AppError(Exception):
    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[ErrorCode] = None,
        status_code: Optional[int] = None,
        details: Optional[list[Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details


class ValidationFailed(AppError):
    code = ErrorCode.VALIDATION_ERROR
    status_code = 400


class AuthenticationFailure(AppError):
    """Bad credential or token. Messages stay deliberately vague."""
    code = ErrorCode.UNAUTHORIZED
    status_code = 401


class AuthorizationFailure(AppError):
    code = ErrorCode.FORBIDDEN
    status_code = 403


class NotFound(AppError):
    code = ErrorCode.NOT_FOUND
    status_code = 404


class Conflict(AppError):
    code = ErrorCode.CONFLICT
    status_code = 409


class RateLimited(AppError):
    code = ErrorCode.RATE_LIMITED
    status_code = 429


def error_response(
    code: ErrorCode | str,
    message: str,
    status_code: int,
    details: Optional[list[Any]] = None,
) -> JSONResponse:
    error: dict[str, Any] = {"code": getattr(code, "value", code), "message": message}
    if details is not None:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


_HTTP_STATUS_CODES = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    409: ErrorCode.CONFLICT,
    429: ErrorCode.RATE_LIMITED,
}


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("request.failed", path=request.url.path, code=exc.code.value, error=exc.message)
    return error_response(exc.code, exc.message, exc.status_code, exc.details)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"field": ".".join(str(p) for p in err["loc"] if p != "body"), "message": err["msg"]}
        for err in exc.errors()
    ]
    return error_response(ErrorCode.VALIDATION_ERROR, "Validation failed", 400, details)


async def _integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    log.warning("request.integrity_error", path=request.url.path, error=str(exc.orig))
    return error_response(ErrorCode.CONFLICT, "A record with these values already exists", 409)


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _HTTP_STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    return error_response(code, str(exc.detail), exc.status_code)


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("request.unhandled_error", path=request.url.path)
    return error_response(ErrorCode.INTERNAL_ERROR, "Internal server error", 500)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(IntegrityError, _integrity_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

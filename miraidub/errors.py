"""
errors.py — Application Error Taxonomy
========================================

Every failure the API reports maps to one ``ErrorCode`` with a fixed
HTTP status.  Routes and services raise ``AppError``; the handlers
registered in ``main.py`` turn it into the uniform envelope:

    {"success": false, "error": {"code": ..., "message": ..., "details": ...}}
"""

import enum
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ErrorCode(enum.Enum):
    # (status, default message)
    UNAUTHORIZED = (401, "Authentication required")
    FORBIDDEN = (403, "Access denied")
    ANONYMOUS_REQUIRED = (403, "Full account required for this action")

    NOT_FOUND = (404, "Resource not found")
    ALREADY_EXISTS = (409, "Resource already exists")

    INSUFFICIENT_CREDITS = (402, "Insufficient credits")
    PAYMENT_FAILED = (402, "Payment processing failed")
    INVALID_PACKAGE = (400, "Invalid credit package")

    UPLOAD_FAILED = (500, "Upload failed")
    PROCESSING_FAILED = (500, "Video processing failed")
    FILE_TOO_LARGE = (413, "File exceeds size limit")
    UNSUPPORTED_FORMAT = (415, "Unsupported file format")

    VALIDATION_ERROR = (400, "Invalid request data")
    INVALID_REQUEST = (400, "Invalid request")

    INTERNAL_ERROR = (500, "An unexpected error occurred")
    EXTERNAL_SERVICE_ERROR = (502, "External service error")

    RATE_LIMITED = (429, "Too many requests")

    @property
    def status_code(self) -> int:
        return self.value[0]

    @property
    def default_message(self) -> str:
        return self.value[1]


class AppError(Exception):
    """An error with a machine-readable code and an HTTP status."""

    def __init__(
        self,
        code: ErrorCode,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message or code.default_message
        self.details = details
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return self.code.status_code

    def to_dict(self) -> dict:
        error = {"code": self.code.name, "message": self.message}
        if self.details is not None:
            error["details"] = self.details
        return {"success": False, "error": error}


class ExternalServiceError(AppError):
    """A call to Replicate, Polar or a result URL failed."""

    def __init__(self, service: str, message: str, status: Optional[int] = None):
        details = {"service": service}
        if status is not None:
            details["status"] = status
        super().__init__(ErrorCode.EXTERNAL_SERVICE_ERROR, message, details)
        self.service = service


def not_found(what: str) -> AppError:
    return AppError(ErrorCode.NOT_FOUND, f"{what} not found")


def invalid_request(message: str, details: Optional[Dict[str, Any]] = None) -> AppError:
    return AppError(ErrorCode.INVALID_REQUEST, message, details)


# ─────────────────────────────────────────────────────────────
# FastAPI exception handlers
# ─────────────────────────────────────────────────────────────

_STATUS_TO_CODE = {
    400: ErrorCode.INVALID_REQUEST,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.INVALID_REQUEST,
    409: ErrorCode.ALREADY_EXISTS,
    413: ErrorCode.FILE_TOO_LARGE,
    415: ErrorCode.UNSUPPORTED_FORMAT,
    429: ErrorCode.RATE_LIMITED,
}


async def _app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} → {exc.code.name}: {exc.message}")
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


async def _validation_error_handler(request: Request, exc: RequestValidationError):
    issues = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    error = AppError(ErrorCode.VALIDATION_ERROR, details={"issues": issues})
    return JSONResponse(error.to_dict(), status_code=error.status_code)


async def _http_error_handler(request: Request, exc: StarletteHTTPException):
    code = _STATUS_TO_CODE.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else code.default_message
    if exc.status_code == 404 and exc.detail == "Not Found":
        message = f"Endpoint not found: {request.method} {request.url.path}"
    error = AppError(code, message)
    return JSONResponse(error.to_dict(), status_code=exc.status_code)


async def _unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    error = AppError(ErrorCode.INTERNAL_ERROR)
    return JSONResponse(error.to_dict(), status_code=error.status_code)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(HTTPException, _http_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

"""Error normalization and handlers."""

import logging
import builtins
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from creditsuite.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class PlanValidationError(ValidationError):
    """Plan catalog rejected before persistence; `field` names the offending path."""

    def __init__(self, message: str, *, field: str, **kwargs):
        super().__init__(message, **kwargs)
        self.field = field


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class PermissionError(AppError, builtins.PermissionError):
    code = "forbidden"
    status_code = 403


class AuthRequiredError(AppError):
    code = "unauthorized"
    status_code = 401


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class AccessDeniedError(AppError):
    """The resolved plan does not enable the requested service."""
    code = "access_denied"
    status_code = 403


class InsufficientBalanceError(AppError):
    code = "insufficient_balance"
    status_code = 402


class ConfigUnavailableError(AppError):
    code = "config_unavailable"
    status_code = 503


class GenerationFailureError(AppError):
    code = "generation_failed"
    status_code = 502


class GenerationTimeoutError(GenerationFailureError):
    code = "generation_timeout"
    status_code = 504


class PersistenceError(AppError):
    code = "persistence_failed"
    status_code = 500


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


_HTTP_CODES = {401: "unauthorized", 403: "forbidden", 404: "not_found", 405: "method_not_allowed"}

logger = logging.getLogger("creditsuite")


def _respond(status_code: int, code: str, message: str, request_id: str, **error_fields: Any) -> JSONResponse:
    """Render the shared error envelope and echo the request id header."""
    error: Dict[str, Any] = {"code": code, "message": message, "request_id": request_id}
    error.update({k: v for k, v in error_fields.items() if v})
    response = JSONResponse(status_code=status_code, content={"error": error, "detail": message})
    response.headers["x-request-id"] = request_id
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    logger.log(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    return _respond(exc.status_code, exc.code, exc.message, rid, field=getattr(exc, "field", None), details=exc.details)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = _HTTP_CODES.get(exc.status_code, "http_error")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    return _respond(exc.status_code, code, exc.detail or "HTTP error", rid)


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    return _respond(500, "internal_error", "Unexpected error", rid)

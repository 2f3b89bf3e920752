from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from aisecretary.apps.api.response import error_response
from aisecretary.core.errors import (
    CalendarAuthError,
    InvalidTransition,
    NotFoundError,
    PlanLimitExceeded,
    ProviderConfigError,
    SecretaryError,
    StoreUnavailable,
    ValidationError,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    402: "PLAN_LIMIT_EXCEEDED",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "INVALID_TRANSITION",
    500: "INTERNAL_ERROR",
    503: "STORE_UNAVAILABLE",
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def _classify(exc: SecretaryError) -> tuple[int, str, dict[str, Any] | None]:
    # Order matters: InvalidTransition is also a ValidationError.
    if isinstance(exc, InvalidTransition):
        return 409, "INVALID_TRANSITION", {"field": exc.field} if exc.field else None
    if isinstance(exc, ValidationError):
        return 400, "VALIDATION_ERROR", {"field": exc.field} if exc.field else None
    if isinstance(exc, NotFoundError):
        return 404, "NOT_FOUND", {"kind": exc.kind, "id": exc.entity_id}
    if isinstance(exc, PlanLimitExceeded):
        return 402, "PLAN_LIMIT_EXCEEDED", {"limit": exc.limit, "used": exc.used}
    if isinstance(exc, CalendarAuthError):
        return 400, "CALENDAR_AUTH_FAILED", None
    if isinstance(exc, StoreUnavailable):
        return 503, "STORE_UNAVAILABLE", None
    if isinstance(exc, ProviderConfigError):
        return 500, "PROVIDER_CONFIG_ERROR", None
    return 500, "INTERNAL_ERROR", None


async def domain_exception_handler(request: Request, exc: SecretaryError) -> JSONResponse:
    status_code, code, details = _classify(exc)
    if status_code >= 500:
        logger.warning("request_failed path=%s code=%s error=%s", request.url.path, code, exc)
    payload = error_response(request=request, code=code, message=str(exc), details=details)
    return JSONResponse(content=payload, status_code=status_code)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Body and query validation failures share the 400 contract of service-level validation.
    errors = exc.errors()
    field = None
    message = "Validation error"
    if errors:
        loc = [str(part) for part in errors[0].get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(loc) or None
        message = f"{field}: {errors[0].get('msg', 'invalid value')}" if field else str(errors[0].get("msg"))
    payload = error_response(
        request=request,
        code="VALIDATION_ERROR",
        message=message,
        details={"field": field, "errors": _jsonable_errors(errors)},
    )
    return JSONResponse(content=payload, status_code=400)


def _jsonable_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
    # Drop ctx/input, which may hold exceptions or raw bytes that do not serialize.
    return [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": str(error.get("msg")), "type": error.get("type")}
        for error in errors
    ]


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("request_unhandled_error path=%s", request.url.path)
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )
    return JSONResponse(content=payload, status_code=500)

"""
Gateway error taxonomy and FastAPI exception handlers.

Why:
    Every failure leaves the process as a small JSON body with a stable
    `error` code and a generic, localized message. Nothing internal (stack
    traces, store errors, the reason a token or entitlement failed) reaches
    the client; full detail goes to the server log instead.

Mapping:
    AuthenticationError -> 401, AuthorizationError -> 403,
    ValidationError / RequestValidationError -> 400 (field-level detail),
    UpstreamError / anything unexpected -> 500, unknown route -> 404,
    rate limit -> 429.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("manara.web")

PRIVATE_NO_STORE = {"Cache-Control": "private, no-store"}

MSG_UNAUTHENTICATED = "جلسة غير صالحة. يرجى تسجيل الدخول."
MSG_FORBIDDEN = "ليس لديك صلاحية الوصول لهذا المحتوى."
MSG_BAD_REQUEST = "بيانات الطلب غير صالحة."
MSG_INTERNAL = "حدث خطأ في الخادم."
MSG_NOT_FOUND = "المسار غير موجود."
MSG_RATE_LIMITED = "تم تجاوز الحد المسموح من الطلبات. يرجى المحاولة لاحقًا."
MSG_METHOD_NOT_ALLOWED = "طريقة الطلب غير مسموحة لهذا المسار."


def private_json(body: Any, *, status_code: int = 200) -> JSONResponse:
    return JSONResponse(body, status_code=status_code, headers=dict(PRIVATE_NO_STORE))


class ApiError(Exception):
    status_code = 500
    code = "internal_error"
    default_message = MSG_INTERNAL

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def body(self) -> dict:
        return {"error": self.code, "message": self.message}


class AuthenticationError(ApiError):
    """Missing or invalid bearer token."""

    status_code = 401
    code = "unauthenticated"
    default_message = MSG_UNAUTHENTICATED


class AuthorizationError(ApiError):
    """Authenticated but not entitled. Never says why."""

    status_code = 403
    code = "forbidden"
    default_message = MSG_FORBIDDEN


class ValidationError(ApiError):
    status_code = 400
    code = "bad_request"
    default_message = MSG_BAD_REQUEST

    def __init__(self, field: str, message: str):
        super().__init__(MSG_BAD_REQUEST)
        self.detail = [{"field": field, "message": message}]

    def body(self) -> dict:
        return {"error": self.code, "message": self.message, "detail": self.detail}


class UpstreamError(ApiError):
    """Entitlement store or auth provider failure; logged, reported as 500."""


def _field_errors(errors: Iterable[dict]) -> list[dict]:
    detail: list[dict] = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        detail.append({"field": ".".join(loc) or "body", "message": str(err.get("msg", "invalid"))})
    return detail


def rate_limited_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Must stay sync: slowapi's middleware does not await exception handlers."""
    return private_json({"error": "rate_limited", "message": MSG_RATE_LIMITED}, status_code=429)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RateLimitExceeded, rate_limited_handler)

    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError):
        if exc.status_code >= 500:
            logger.error("api error path=%s code=%s", request.url.path, exc.code, exc_info=exc)
        return private_json(exc.body(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        body = {"error": "bad_request", "message": MSG_BAD_REQUEST, "detail": _field_errors(exc.errors())}
        return private_json(body, status_code=400)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return private_json({"error": "not_found", "message": MSG_NOT_FOUND}, status_code=404)
        if exc.status_code == 405:
            return private_json({"error": "method_not_allowed", "message": MSG_METHOD_NOT_ALLOWED}, status_code=405)
        if exc.status_code >= 500:
            return private_json({"error": "internal_error", "message": MSG_INTERNAL}, status_code=exc.status_code)
        return private_json({"error": "bad_request", "message": MSG_BAD_REQUEST}, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception):
        logger.exception("unhandled error path=%s", request.url.path)
        return private_json({"error": "internal_error", "message": MSG_INTERNAL}, status_code=500)


__all__ = [
    "PRIVATE_NO_STORE",
    "private_json",
    "ApiError",
    "AuthenticationError",
    "AuthorizationError",
    "ValidationError",
    "UpstreamError",
    "install_error_handlers",
]

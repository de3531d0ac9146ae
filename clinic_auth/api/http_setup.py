"""HTTP middleware and exception handler wiring for FastAPI apps."""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from clinic_auth.api.contracts import ApiErrorResponse
from clinic_auth.api.errors import ApiErrorCode, auth_error_payload, to_error_payload
from clinic_auth.auth.errors import AuthError, AuthErrorKind
from clinic_auth.core.config import SecurityConfig
from clinic_auth.core.logging import set_correlation_id


def _error_response(status_code: int, code: ApiErrorCode, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ApiErrorResponse(error=error, code=str(code), message=message).model_dump(
            exclude_none=True
        ),
    )


def register_request_size_limit(app: FastAPI, *, security: SecurityConfig) -> None:
    """Reject bodies whose declared length exceeds the configured limit."""

    @app.middleware("http")
    async def request_size_limit_middleware(request: Request, call_next):
        content_length = request.headers.get("content-length")
        if content_length:
            try:
                parsed_length = int(content_length)
            except ValueError:
                parsed_length = 0
            if parsed_length > security.request_max_bytes:
                return _error_response(
                    413,
                    ApiErrorCode.REQUEST_TOO_LARGE,
                    "RequestTooLarge",
                    f"Request size exceeds configured limit ({security.request_max_bytes} bytes).",
                )
        return await call_next(request)


def register_request_logging(app: FastAPI, *, logger: Any) -> None:
    """Attach correlation ids, security headers and request completion logs.

    Register this last so it wraps every other middleware, the auth guard included.
    """

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        correlation_id = (
            request.headers.get("x-request-id")
            or request.headers.get("x-correlation-id")
            or uuid.uuid4().hex
        )
        set_correlation_id(correlation_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cache-Control"] = "no-store"
        auth = getattr(request.state, "auth", None)
        logger.info(
            "request_completed",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
                "principal_id": auth.principal_id if auth is not None else None,
            },
        )
        return response


def register_exception_handlers(app: FastAPI, *, logger: Any) -> None:
    """Attach API exception handlers that return stable error contracts."""

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError) -> JSONResponse:
        status_code, payload = auth_error_payload(exc)
        log = logger.error if exc.kind == AuthErrorKind.UNAVAILABLE else logger.warning
        log(
            "auth_error",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "reason": getattr(exc, "reason", None) or str(exc.kind),
            },
        )
        return JSONResponse(status_code=status_code, content=payload)

    @app.exception_handler(HTTPException)
    async def handle_http_exception(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        payload = to_error_payload(exc.detail, exc.status_code)
        logger.warning(
            "http_exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": exc.status_code,
            },
        )
        return JSONResponse(status_code=exc.status_code, content=payload)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_exception(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        logger.warning(
            "validation_exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": 422,
            },
        )
        fields = ", ".join(
            ".".join(str(part) for part in error.get("loc", ())) for error in exc.errors()
        )
        return _error_response(
            422,
            ApiErrorCode.VALIDATION_ERROR,
            "ValidationError",
            f"Invalid request: {fields}" if fields else "Invalid request",
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_exception(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        logger.exception(
            "unexpected_exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": 500,
            },
        )
        return _error_response(
            500,
            ApiErrorCode.INTERNAL_SERVER_ERROR,
            "InternalServerError",
            "Internal server error",
        )

"""Exception handlers rendering UCP and OAuth error bodies.

UCP errors:
{
    "error": {
        "code": "CONFLICT",
        "message": "Cannot modify checkout in 'completed' state",
        "retryable": false,
        "details": [{"field": "...", "code": "...", "message": "..."}]
    }
}

OAuth errors follow RFC 6749: ``{"error": "...", "error_description": "..."}``.
"""
from __future__ import annotations

import logging
from typing import Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..exceptions import ErrorDetail, UCPErrorCode, UCPException
from ..identity.models import OAuthError, OAuthErrorCode
from .middleware import get_request_id

logger = logging.getLogger(__name__)

STATUS_TO_CODE = {
    400: UCPErrorCode.INVALID_REQUEST,
    401: UCPErrorCode.UNAUTHORIZED,
    403: UCPErrorCode.FORBIDDEN,
    404: UCPErrorCode.NOT_FOUND,
    405: UCPErrorCode.INVALID_REQUEST,
    409: UCPErrorCode.CONFLICT,
    410: UCPErrorCode.GONE,
    422: UCPErrorCode.UNPROCESSABLE,
    429: UCPErrorCode.RATE_LIMITED,
    503: UCPErrorCode.SERVICE_UNAVAILABLE,
}


def _is_production(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    return settings.is_production() if settings is not None else True


def ucp_error_response(exc: UCPException, request_id: str) -> JSONResponse:
    headers: Dict[str, str] = {"X-Request-ID": request_id}
    if exc.retry_after is not None:
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(status_code=exc.http_status, content=exc.to_response(), headers=headers)


def oauth_error_response(exc: OAuthError, request_id: Optional[str] = None) -> JSONResponse:
    headers = {"Cache-Control": "no-store", "Pragma": "no-cache"}
    if request_id:
        headers["X-Request-ID"] = request_id
    if exc.status_code == 401:
        headers["WWW-Authenticate"] = f'Bearer error="{exc.error.value}"'
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application."""

    @app.exception_handler(UCPException)
    async def ucp_exception_handler(request: Request, exc: UCPException) -> JSONResponse:
        request_id = get_request_id(request)
        if exc.http_status >= 500:
            logger.error(
                f"Server error: {exc.code.value} - {exc.message}",
                extra={"request_id": request_id, "path": request.url.path},
            )
        else:
            logger.warning(
                f"Client error: {exc.code.value} - {exc.message}",
                extra={"request_id": request_id, "path": request.url.path},
            )
        return ucp_error_response(exc, request_id)

    @app.exception_handler(OAuthError)
    async def oauth_exception_handler(request: Request, exc: OAuthError) -> JSONResponse:
        request_id = get_request_id(request)
        logger.warning(
            f"OAuth error: {exc.error.value} - {exc.description}",
            extra={"request_id": request_id, "path": request.url.path},
        )
        return oauth_error_response(exc, request_id)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        request_id = get_request_id(request)

        # OAuth endpoints answer in RFC 6749 shape
        if request.url.path.startswith("/identity/"):
            first = exc.errors()[0] if exc.errors() else {}
            field = str(first.get("loc", ["", "request"])[-1])
            return oauth_error_response(
                OAuthError(OAuthErrorCode.INVALID_REQUEST, f"Invalid or missing parameter: {field}"),
                request_id,
            )

        details = []
        for error in exc.errors():
            loc = [str(part) for part in error["loc"] if part not in ("body", "query", "path")]
            details.append(ErrorDetail(".".join(loc) or None, "INVALID_FIELD", error["msg"]))

        logger.warning(
            f"Validation error: {len(details)} field(s) failed",
            extra={"request_id": request_id, "path": request.url.path},
        )
        return ucp_error_response(
            UCPException(UCPErrorCode.INVALID_REQUEST, "Request validation failed", details=details),
            request_id,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        request_id = get_request_id(request)
        code = STATUS_TO_CODE.get(exc.status_code, UCPErrorCode.INTERNAL_ERROR)
        message = str(exc.detail) if exc.detail else "An error occurred"
        response = ucp_error_response(UCPException(code, message), request_id)
        response.status_code = exc.status_code
        return response

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = get_request_id(request)
        logger.error(
            f"Unhandled exception: {type(exc).__name__}: {exc}",
            extra={"request_id": request_id, "path": request.url.path, "method": request.method},
            exc_info=True,
        )
        if _is_production(request):
            message = "An internal error occurred"
        else:
            message = f"{type(exc).__name__}: {exc}"
        return ucp_error_response(UCPException(UCPErrorCode.INTERNAL_ERROR, message), request_id)

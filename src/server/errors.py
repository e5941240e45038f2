"""Exception handlers mapping MTD failures onto JSON error responses.

Bodies carry a user-safe message, a stable code and optional per-field
details. Raw HMRC payloads and token values never reach the client.
"""

import asyncio
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.hmrc.exceptions import ErrorKind, HmrcApiError, IncompleteFraudHeadersError
from src.oauth.exceptions import (
    AuthorizationError,
    SessionExpiredError,
    TokenRefreshError,
    TokenStorageError,
)
from src.server.models.common import ErrorResponse

logger = logging.getLogger(__name__)

KIND_STATUS = {
    ErrorKind.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.RESOURCE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.UPSTREAM_UNAVAILABLE: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.UNKNOWN: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _error_response(status_code: int, error: str, code: str, details=None, headers=None) -> JSONResponse:
    body = ErrorResponse(error=error, code=code, details=details or None)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
        headers=headers,
    )


async def hmrc_api_error_handler(request: Request, exc: HmrcApiError) -> JSONResponse:
    status_code = KIND_STATUS.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    logger.warning(
        f"HMRC error on {request.method} {request.url.path}: {exc.code} "
        f"(kind={exc.kind.value}, correlation={exc.correlation_id})"
    )
    headers = None
    if exc.kind == ErrorKind.RATE_LIMITED and exc.retry_after:
        headers = {"Retry-After": str(int(exc.retry_after))}
    return _error_response(status_code, exc.message, exc.code, exc.errors, headers)


async def session_expired_handler(request: Request, exc: SessionExpiredError) -> JSONResponse:
    return _error_response(
        status.HTTP_401_UNAUTHORIZED,
        "Your HMRC session has expired. Please reconnect to HMRC.",
        "SESSION_EXPIRED",
    )


async def authorization_error_handler(request: Request, exc: AuthorizationError) -> JSONResponse:
    return _error_response(status.HTTP_400_BAD_REQUEST, str(exc), "INVALID_AUTHORIZATION")


async def fraud_headers_handler(request: Request, exc: IncompleteFraudHeadersError) -> JSONResponse:
    logger.error(f"Refusing HMRC call with incomplete fraud headers: {exc.missing}")
    return _error_response(
        status.HTTP_400_BAD_REQUEST,
        "Required fraud prevention information is missing from the request.",
        "INCOMPLETE_FRAUD_HEADERS",
        details=exc.missing,
    )


async def token_refresh_handler(request: Request, exc: TokenRefreshError) -> JSONResponse:
    logger.error(f"Token refresh failed: {exc}")
    return _error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "HMRC could not be reached to renew your session. Please try again.",
        "TOKEN_REFRESH_FAILED",
    )


async def token_storage_handler(request: Request, exc: TokenStorageError) -> JSONResponse:
    logger.error(f"Token storage failure: {exc}")
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred.",
        "INTERNAL_ERROR",
    )


async def timeout_handler(request: Request, exc: asyncio.TimeoutError) -> JSONResponse:
    return _error_response(
        status.HTTP_504_GATEWAY_TIMEOUT,
        "The request to HMRC timed out. Please try again.",
        "GATEWAY_TIMEOUT",
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the MTD exception handlers to an application."""
    app.add_exception_handler(HmrcApiError, hmrc_api_error_handler)
    app.add_exception_handler(SessionExpiredError, session_expired_handler)
    app.add_exception_handler(AuthorizationError, authorization_error_handler)
    app.add_exception_handler(IncompleteFraudHeadersError, fraud_headers_handler)
    app.add_exception_handler(TokenRefreshError, token_refresh_handler)
    app.add_exception_handler(TokenStorageError, token_storage_handler)
    app.add_exception_handler(asyncio.TimeoutError, timeout_handler)

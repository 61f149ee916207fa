"""Global exception handlers for FastAPI.

Nothing reaching these handlers may leak internals: messages are fixed
strings, details go to the server log only.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from auth.exceptions import (
    AuthError,
    CsrfError,
    CredentialError,
    DependencyError,
    InvalidRequestError,
    SessionExpiredError,
)
from api.base import error_response, ErrorCodes

logger = logging.getLogger(__name__)

# Most specific first
_AUTH_ERROR_STATUS = (
    (InvalidRequestError, 400, ErrorCodes.INVALID_REQUEST, "Unable to process request"),
    (CsrfError, 403, ErrorCodes.CSRF_FAILED, "Security validation failed"),
    (CredentialError, 401, ErrorCodes.INVALID_TOKEN, "Invalid or expired link"),
    (SessionExpiredError, 401, ErrorCodes.SESSION_EXPIRED, "Session has expired"),
    (DependencyError, 503, ErrorCodes.SERVICE_UNAVAILABLE, "Unable to process request. Please try again later."),
)


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _json(request: Request, status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_response(code, message, _request_id(request)).model_dump(mode="json"),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        for error_type, status_code, code, message in _AUTH_ERROR_STATUS:
            if isinstance(exc, error_type):
                logger.info(f"{type(exc).__name__} on {request.url.path}: {exc}")
                return _json(request, status_code, code, message)
        logger.error(f"Unmapped auth error on {request.url.path}: {exc!r}")
        return _json(request, 500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred")

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.info(f"Rejected malformed request on {request.url.path}: {exc.errors()}")
        return _json(request, 400, ErrorCodes.INVALID_REQUEST, "Unable to process request")

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return _json(request, 500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred")

"""Global exception handlers for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from auth.exceptions import AuthError, AuthErrorCode

logger = logging.getLogger(__name__)

_STATUS_BY_CODE = {
    AuthErrorCode.INVALID_CREDENTIALS: 401,
    AuthErrorCode.EMAIL_NOT_VERIFIED: 401,
    AuthErrorCode.SESSION_EXPIRED: 401,
    AuthErrorCode.TOKEN_REFRESH_FAILED: 401,
    AuthErrorCode.INVALID_TOKEN: 401,
    AuthErrorCode.RATE_LIMIT_EXCEEDED: 429,
    AuthErrorCode.SIGNUP_COOLDOWN: 429,
    AuthErrorCode.NETWORK_ERROR: 503,
    AuthErrorCode.SERVICE_UNAVAILABLE: 503,
    AuthErrorCode.DATABASE_ERROR: 503,
    AuthErrorCode.PROFILE_CREATION_FAILED: 503,
    AuthErrorCode.PROFILE_UPDATE_FAILED: 503,
}


def auth_error_status(error: AuthError) -> int:
    """HTTP status for an AuthError; client-side mistakes default to 400."""
    return _STATUS_BY_CODE.get(error.code, 400)


def auth_error_json(error: AuthError) -> JSONResponse:
    """Envelope response for an AuthError, with Retry-After when known."""
    headers = None
    if error.retry_after_seconds is not None:
        headers = {"Retry-After": str(error.retry_after_seconds)}
    return JSONResponse(
        status_code=auth_error_status(error),
        headers=headers,
        content=error_response(
            error.code.value,
            error.user_message,
            retryable=error.retryable,
            retry_after_seconds=error.retry_after_seconds,
        ).model_dump(mode="json"),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        logger.info(f"{request.method} {request.url.path} failed: {exc.code.value}: {exc.message}")
        return auth_error_json(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content=error_response(
                ErrorCodes.VALIDATION_ERROR,
                str(exc.errors()),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return JSONResponse(
            status_code=500,
            content=error_response(
                ErrorCodes.INTERNAL_ERROR,
                "An internal error occurred",
            ).model_dump(mode="json"),
        )

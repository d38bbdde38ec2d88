"""Translate auth provider failures into AuthError codes."""

import logging

from auth.exceptions import AuthError, AuthErrorCode
from clients.auth_provider_client import AuthProviderError

logger = logging.getLogger(__name__)

# (substring of provider message, code, retryable)
_MESSAGE_RULES = [
    ("invalid login credentials", AuthErrorCode.INVALID_CREDENTIALS, False),
    ("email not confirmed", AuthErrorCode.EMAIL_NOT_VERIFIED, False),
    ("too many requests", AuthErrorCode.RATE_LIMIT_EXCEEDED, True),
    ("invalid email", AuthErrorCode.INVALID_EMAIL, False),
    ("unable to validate email", AuthErrorCode.INVALID_EMAIL, False),
    ("password should", AuthErrorCode.WEAK_PASSWORD, False),
    ("jwt expired", AuthErrorCode.SESSION_EXPIRED, False),
    ("refresh_token_not_found", AuthErrorCode.SESSION_EXPIRED, False),
    ("refresh token not found", AuthErrorCode.SESSION_EXPIRED, False),
    ("invalid token", AuthErrorCode.INVALID_TOKEN, False),
]

_RETRYABLE_CODES = {
    AuthErrorCode.NETWORK_ERROR,
    AuthErrorCode.SERVICE_UNAVAILABLE,
    AuthErrorCode.TOKEN_REFRESH_FAILED,
    AuthErrorCode.DATABASE_ERROR,
    AuthErrorCode.PROFILE_CREATION_FAILED,
    AuthErrorCode.PROFILE_UPDATE_FAILED,
}


def parse_provider_error(error: Exception) -> AuthError:
    """Map any failure from the provider boundary to an AuthError.

    AuthErrors pass through unchanged.
    """
    if isinstance(error, AuthError):
        return error

    if not isinstance(error, AuthProviderError):
        return AuthError(str(error) or "An unexpected error occurred")

    if error.status is None:
        return AuthError(
            error.message,
            code=AuthErrorCode.NETWORK_ERROR,
            retryable=True,
            retry_after_seconds=3,
        )

    message = error.message.lower()

    if error.status == 429:
        return AuthError(
            error.message,
            code=AuthErrorCode.RATE_LIMIT_EXCEEDED,
            retryable=True,
            retry_after_seconds=60,
        )

    for fragment, code, retryable in _MESSAGE_RULES:
        if fragment in message:
            return AuthError(
                error.message,
                code=code,
                retryable=retryable,
                retry_after_seconds=60 if code == AuthErrorCode.RATE_LIMIT_EXCEEDED else None,
            )

    if error.status >= 500:
        return AuthError(
            error.message,
            code=AuthErrorCode.SERVICE_UNAVAILABLE,
            retryable=True,
            retry_after_seconds=5,
        )

    logger.debug(f"Unmapped provider error ({error.status}, {error.error_code}): {error.message}")
    return AuthError(error.message)


def is_retryable(error: AuthError) -> bool:
    """Whether retrying the same operation may succeed."""
    return error.retryable or error.code in _RETRYABLE_CODES

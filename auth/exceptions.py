"""Typed exceptions for auth failures.

Every AuthError carries a machine-readable code and a message safe to show
in the UI. Callers may catch by type or branch on ``error.code``.
"""

from enum import Enum


class AuthErrorCode(str, Enum):
    """Machine-readable auth failure codes."""

    INVALID_CREDENTIALS = "invalid_credentials"
    EMAIL_NOT_VERIFIED = "email_not_verified"
    NETWORK_ERROR = "network_error"
    SERVICE_UNAVAILABLE = "service_unavailable"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    SIGNUP_COOLDOWN = "signup_cooldown"
    INVALID_EMAIL = "invalid_email"
    WEAK_PASSWORD = "weak_password"
    MISSING_FIELDS = "missing_fields"
    SESSION_EXPIRED = "session_expired"
    TOKEN_REFRESH_FAILED = "token_refresh_failed"
    INVALID_TOKEN = "invalid_token"
    PROFILE_CREATION_FAILED = "profile_creation_failed"
    PROFILE_UPDATE_FAILED = "profile_update_failed"
    DATABASE_ERROR = "database_error"
    INVALID_RESET_TOKEN = "invalid_reset_token"
    INVALID_VERIFICATION_TOKEN = "invalid_verification_token"
    UNKNOWN_ERROR = "unknown_error"


_USER_MESSAGES = {
    AuthErrorCode.INVALID_CREDENTIALS: "Invalid email or password. Please check your credentials and try again.",
    AuthErrorCode.EMAIL_NOT_VERIFIED: "Please verify your email address before signing in. Check your inbox for a verification link.",
    AuthErrorCode.NETWORK_ERROR: "Connection problem. Please check your internet connection and try again.",
    AuthErrorCode.SERVICE_UNAVAILABLE: "Service is temporarily unavailable. Please try again in a few minutes.",
    AuthErrorCode.RATE_LIMIT_EXCEEDED: "Too many attempts. Please wait before trying again.",
    AuthErrorCode.SIGNUP_COOLDOWN: "Please wait a moment before creating another account.",
    AuthErrorCode.INVALID_EMAIL: "Please enter a valid email address.",
    AuthErrorCode.WEAK_PASSWORD: "Password must be at least 8 characters long and include letters and numbers.",
    AuthErrorCode.MISSING_FIELDS: "Please fill in all required fields.",
    AuthErrorCode.SESSION_EXPIRED: "Your session has expired. Please sign in again.",
    AuthErrorCode.TOKEN_REFRESH_FAILED: "Session refresh failed. Please sign in again.",
    AuthErrorCode.INVALID_TOKEN: "Invalid authentication token. Please sign in again.",
    AuthErrorCode.PROFILE_CREATION_FAILED: "Account created but profile setup failed. Please try signing in.",
    AuthErrorCode.PROFILE_UPDATE_FAILED: "Failed to update profile. Please try again.",
    AuthErrorCode.DATABASE_ERROR: "Database error occurred. Please try again later.",
    AuthErrorCode.INVALID_RESET_TOKEN: "Invalid or expired password reset link. Please request a new one.",
    AuthErrorCode.INVALID_VERIFICATION_TOKEN: "Invalid verification link. Please check your email for the correct link.",
    AuthErrorCode.UNKNOWN_ERROR: "An unexpected error occurred. Please try again.",
}


def user_message_for(code: AuthErrorCode) -> str:
    """Displayable message for an error code."""
    return _USER_MESSAGES.get(code, _USER_MESSAGES[AuthErrorCode.UNKNOWN_ERROR])


class AuthError(Exception):
    """Base class for authentication errors.

    Subclasses pin ``code``; the base class accepts any code so mapped
    provider failures can be raised without a dedicated type.
    """

    code: AuthErrorCode = AuthErrorCode.UNKNOWN_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        user_message: str | None = None,
        code: AuthErrorCode | None = None,
        retryable: bool | None = None,
        retry_after_seconds: int | None = None,
    ):
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable
        self.message = message
        self.user_message = user_message or user_message_for(self.code)
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message)


class InvalidEmailError(AuthError):
    """Email address is empty or malformed."""

    code = AuthErrorCode.INVALID_EMAIL


class WeakPasswordError(AuthError):
    """Password does not meet the minimum requirements."""

    code = AuthErrorCode.WEAK_PASSWORD


class MissingFieldsError(AuthError):
    """A required field is blank or out of range."""

    code = AuthErrorCode.MISSING_FIELDS


class InvalidCredentialsError(AuthError):
    """Wrong email/password combination."""

    code = AuthErrorCode.INVALID_CREDENTIALS


class SessionExpiredError(AuthError):
    """
    No usable session.

    Also raised when a verification token is unknown or expired: the
    provider reports no session for it.
    """

    code = AuthErrorCode.SESSION_EXPIRED


class TokenRefreshFailedError(AuthError):
    """The provider rejected the refresh-token exchange."""

    code = AuthErrorCode.TOKEN_REFRESH_FAILED
    retryable = True


class InvalidVerificationTokenError(AuthError):
    """Verification link carried no token."""

    code = AuthErrorCode.INVALID_VERIFICATION_TOKEN


class RateLimitedError(AuthError):
    """Too many attempts. Client should wait before retrying."""

    code = AuthErrorCode.RATE_LIMIT_EXCEEDED
    retryable = True

    def __init__(self, retry_after_seconds: int, code: AuthErrorCode | None = None):
        super().__init__(
            f"Rate limited. Retry after {retry_after_seconds} seconds.",
            user_message=f"Please wait {retry_after_seconds} seconds before trying again.",
            code=code,
            retry_after_seconds=retry_after_seconds,
        )


class ProfileCreationFailedError(AuthError):
    """Identity exists but its profile row could not be written."""

    code = AuthErrorCode.PROFILE_CREATION_FAILED
    retryable = True

"""Authentication: sessions, email-verified sign-up and profiles."""

from auth.exceptions import (
    AuthError,
    AuthErrorCode,
    InvalidEmailError,
    WeakPasswordError,
    MissingFieldsError,
    InvalidCredentialsError,
    SessionExpiredError,
    TokenRefreshFailedError,
    InvalidVerificationTokenError,
    RateLimitedError,
    ProfileCreationFailedError,
)
from auth.error_mapping import parse_provider_error, is_retryable
from auth.types import (
    UserRole,
    VerificationStatus,
    AuthIdentity,
    Session,
    UserProfile,
    SignUpRequest,
    EmailRequest,
    SignUpResult,
)
from auth.config import AuthConfig
from auth.events import AuthEvent, AuthStateChange, AuthEventBus
from auth.session_store import SessionStore
from auth.session import SessionManager, SessionState
from auth.database import ProfileDatabase
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityLogger, SecurityEvent
from auth.service import AuthService
from auth.context import AuthContext, AuthState
from auth.api import create_auth_router

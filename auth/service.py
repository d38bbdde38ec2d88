"""Authentication service - business-level auth operations for the UI.

Handles:
- Sign-up (identity only; the profile waits for email verification)
- Verification email resend and the verification callback
- Sign-in / sign-out
- Current user resolution (session joined to profile row)
- Profile updates and password reset
"""

import asyncio
import logging
from typing import Any
from uuid import UUID

from pydantic import EmailStr, TypeAdapter, ValidationError

from auth.config import AuthConfig
from auth.database import ProfileDatabase
from auth.error_mapping import parse_provider_error
from auth.exceptions import (
    AuthError,
    AuthErrorCode,
    InvalidEmailError,
    InvalidVerificationTokenError,
    MissingFieldsError,
    ProfileCreationFailedError,
    RateLimitedError,
    SessionExpiredError,
    WeakPasswordError,
)
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.session import SessionManager
from auth.types import AuthIdentity, SignUpResult, UserProfile, UserRole, VerificationStatus
from clients.auth_provider_client import AuthProviderClient, AuthProviderError
from utils.user_context import user_context

logger = logging.getLogger(__name__)

_email_adapter = TypeAdapter(EmailStr)


def initial_verification_status(role: UserRole) -> VerificationStatus:
    """Buyers are active as soon as their email is verified; everyone else waits for review."""
    if role == UserRole.BUYER:
        return VerificationStatus.APPROVED
    return VerificationStatus.PENDING


class AuthService:
    """Orchestrates the email-verified sign-up flow and session-backed auth."""

    def __init__(
        self,
        config: AuthConfig,
        provider: AuthProviderClient,
        session_manager: SessionManager,
        profiles: ProfileDatabase,
        rate_limiter: RateLimiter,
        security_logger: SecurityLogger,
    ):
        self._config = config
        self._provider = provider
        self._session_manager = session_manager
        self._profiles = profiles
        self._rate_limiter = rate_limiter
        self._security_logger = security_logger

    @property
    def session_manager(self) -> SessionManager:
        return self._session_manager

    @staticmethod
    def _validate_email(email: str | None) -> str:
        """Normalized email, or InvalidEmailError."""
        candidate = (email or "").strip().lower()
        if not candidate:
            raise InvalidEmailError("Email is required")
        try:
            _email_adapter.validate_python(candidate)
        except ValidationError:
            raise InvalidEmailError("Invalid email format")
        return candidate

    async def _audit(
        self,
        event: SecurityEvent,
        email: str | None = None,
        user_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Write a security event. Audit failures are logged, never raised."""
        try:
            await asyncio.to_thread(self._security_logger.log, event, email, user_id, details)
        except Exception:
            logger.exception(f"Failed to record security event {event.value}")

    @staticmethod
    def _profile_metadata(identity: AuthIdentity) -> tuple[str, UserRole]:
        """Name and role stored on the identity at sign-up."""
        metadata = identity.user_metadata or {}
        name = (metadata.get("name") or "").strip()
        if not name:
            name = identity.email.split("@")[0] if identity.email else "User"
        try:
            role = UserRole(metadata.get("role") or UserRole.BUYER.value)
        except ValueError:
            logger.warning(f"Unknown role {metadata.get('role')!r} on identity {identity.id}; using buyer")
            role = UserRole.BUYER
        return name, role

    async def _get_profile(self, user_id: UUID) -> UserProfile | None:
        with user_context(user_id):
            return await asyncio.to_thread(self._profiles.get_profile, user_id)

    async def _ensure_profile(self, identity: AuthIdentity) -> UserProfile:
        """Existing profile for identity, or a newly created one.

        Creation is retried with exponential backoff.

        Raises:
            ProfileCreationFailedError: All attempts failed.
        """
        name, role = self._profile_metadata(identity)
        attempts = self._config.profile_create_retries

        for attempt in range(1, attempts + 1):
            try:
                existing = await self._get_profile(identity.id)
                if existing is not None:
                    return existing

                with user_context(identity.id):
                    profile = await asyncio.to_thread(
                        self._profiles.create_profile,
                        identity.id,
                        identity.email or "",
                        name,
                        role,
                        initial_verification_status(role),
                    )
            except Exception as e:
                logger.warning(f"Profile creation attempt {attempt}/{attempts} failed for {identity.id}: {e}")
                if attempt == attempts:
                    raise ProfileCreationFailedError(f"Failed to create user profile: {e}") from e
                await asyncio.sleep(self._config.profile_retry_base_delay_seconds * (2 ** (attempt - 1)))
                continue

            logger.info(f"Created {role.value} profile for {identity.id} ({profile.verification_status.value})")
            await self._audit(
                SecurityEvent.PROFILE_CREATED,
                email=profile.email,
                user_id=profile.id,
                details={"role": role.value, "verification_status": profile.verification_status.value},
            )
            return profile

        raise ProfileCreationFailedError("Profile creation was not attempted")

    async def sign_up(self, email: str, password: str, name: str, role: UserRole | str) -> SignUpResult:
        """Create an unverified identity and send the verification email.

        Never creates a profile and never signs the user in: both wait for
        verify_email(), whatever the role and whatever the provider returns.

        Raises:
            InvalidEmailError, WeakPasswordError, MissingFieldsError: Local validation.
            RateLimitedError: Sign-up cooldown for this email is active.
            AuthError: Provider rejected the sign-up, or the cooldown store is down (service_unavailable).
        """
        email = self._validate_email(email)
        if len(password or "") < self._config.min_password_length:
            raise WeakPasswordError(
                "Password too short",
                user_message=f"Password must be at least {self._config.min_password_length} characters long.",
            )
        if not name or not name.strip():
            raise MissingFieldsError("Name is required", user_message="Please enter your name.")
        try:
            role = UserRole(role)
        except ValueError:
            raise MissingFieldsError("Invalid role", user_message="Please select a valid role.")

        try:
            await asyncio.to_thread(self._rate_limiter.check_signup_cooldown, email)
        except RateLimitedError:
            await self._audit(SecurityEvent.SIGNUP_COOLDOWN, email=email)
            raise
        except Exception as e:
            logger.error(f"Sign-up cooldown check failed for {email}: {e}")
            raise AuthError(
                f"Sign-up cooldown store unavailable: {e}",
                code=AuthErrorCode.SERVICE_UNAVAILABLE,
                retryable=True,
            ) from e

        try:
            payload = await asyncio.to_thread(
                self._provider.sign_up,
                email,
                password,
                {"name": name.strip(), "role": role.value},
                self._config.callback_url,
            )
        except AuthProviderError as e:
            raise parse_provider_error(e) from e

        identity = payload.get("user") or payload
        if not identity.get("id"):
            raise AuthError(
                "Signup succeeded but no user returned",
                user_message="An unexpected error occurred during signup. Please try again.",
                retryable=True,
            )

        await self._audit(
            SecurityEvent.SIGNUP_REQUESTED,
            email=email,
            user_id=UUID(str(identity["id"])),
            details={"role": role.value},
        )
        logger.info(f"Sign-up requested for {email} as {role.value}; awaiting verification")
        return SignUpResult(success=True, needs_verification=True, user=None)

    async def resend_verification_email(self, email: str) -> None:
        """Ask the provider to resend the sign-up verification email.

        Raises:
            InvalidEmailError: Empty or malformed email.
            AuthError: Provider rejected the request.
        """
        email = self._validate_email(email)
        try:
            await asyncio.to_thread(self._provider.resend, email, self._config.callback_url)
        except AuthProviderError as e:
            raise parse_provider_error(e) from e
        await self._audit(SecurityEvent.VERIFICATION_RESENT, email=email)

    async def verify_email(self, token: str) -> UserProfile:
        """Exchange a verification token for a session and create the profile.

        Buyers are approved immediately; sellers (and admins) stay pending
        until reviewed.

        Raises:
            InvalidVerificationTokenError: No token given.
            SessionExpiredError: Token unknown/expired, or no session issued.
            ProfileCreationFailedError: Session issued but the profile could not be written.
        """
        if not token or not token.strip():
            raise InvalidVerificationTokenError("No verification token provided")

        try:
            session = await self._session_manager.verify_otp(token.strip())
        except AuthProviderError as e:
            if e.status is None or e.status >= 500:
                raise parse_provider_error(e) from e
            await self._audit(SecurityEvent.VERIFICATION_FAILED, details={"reason": e.message})
            raise SessionExpiredError(
                f"Verification token rejected: {e.message}",
                user_message="Verification link is invalid or has expired. Please request a new one.",
            ) from e

        if session is None or session.user is None:
            await self._audit(SecurityEvent.VERIFICATION_FAILED, details={"reason": "no_session"})
            raise SessionExpiredError(
                "No session found after email verification",
                user_message="Verification completed but session not found. Please try signing in.",
            )

        profile = await self._ensure_profile(session.user)
        await self._audit(SecurityEvent.EMAIL_VERIFIED, email=profile.email, user_id=profile.id)
        return profile

    async def sign_in(self, email: str, password: str) -> UserProfile:
        """Sign in with email and password; returns the (possibly new) profile.

        Raises:
            MissingFieldsError: Email or password empty.
            AuthError: Provider rejected the credentials (e.g. invalid_credentials,
                email_not_verified).
            ProfileCreationFailedError: Profile missing and could not be created.
        """
        if not email or not password:
            raise MissingFieldsError(
                "Email and password are required",
                user_message="Please enter both email and password.",
            )
        email = email.strip().lower()

        try:
            session = await self._session_manager.sign_in_with_password(email, password)
        except AuthProviderError as e:
            error = parse_provider_error(e)
            await self._audit(SecurityEvent.SIGN_IN_FAILED, email=email, details={"code": error.code.value})
            raise error from e

        if session.user is None:
            raise AuthError(
                "Signin succeeded but no user returned",
                user_message="An unexpected error occurred during signin. Please try again.",
                retryable=True,
            )

        profile = await self._ensure_profile(session.user)
        await self._audit(SecurityEvent.SIGNED_IN, email=profile.email, user_id=profile.id)
        return profile

    async def sign_out(self) -> None:
        """Sign out. Local state is always cleared; never raises."""
        session = self._session_manager.current_session
        await self._session_manager.clear_session()
        await self._audit(
            SecurityEvent.SIGNED_OUT,
            user_id=session.user.id if session is not None and session.user is not None else None,
        )

    async def get_current_user(self) -> UserProfile | None:
        """Profile of the signed-in identity, or None. Never raises.

        A lookup failure is indistinguishable from "not signed in" for the
        caller, so both return None.
        """
        try:
            session = await self._session_manager.get_session()
            if session is None or session.user is None:
                return None
            return await self._get_profile(session.user.id)
        except Exception:
            logger.exception("Failed to resolve current user")
            return None

    async def update_profile(self, user_id: UUID, name: str) -> UserProfile:
        """Change the display name of the signed-in user's own profile.

        Raises:
            SessionExpiredError: No session, or it belongs to another identity.
            MissingFieldsError: Blank name.
            AuthError: profile_update_failed.
        """
        session = await self._session_manager.get_session()
        if session is None or session.user is None or session.user.id != user_id:
            raise SessionExpiredError(
                "Invalid session for profile update",
                user_message="Your session has expired. Please log in again.",
            )
        if not name or not name.strip():
            raise MissingFieldsError("Name is required", user_message="Please enter your name.")

        try:
            with user_context(user_id):
                profile = await asyncio.to_thread(self._profiles.update_profile, user_id, name.strip())
        except Exception as e:
            logger.exception(f"Profile update failed for {user_id}")
            raise AuthError(str(e), code=AuthErrorCode.PROFILE_UPDATE_FAILED, retryable=True) from e

        if profile is None:
            raise AuthError(f"Profile {user_id} not found", code=AuthErrorCode.PROFILE_UPDATE_FAILED)
        return profile

    async def request_password_reset(self, email: str) -> None:
        """Send a password reset email. The provider does not reveal whether the email exists.

        Raises:
            InvalidEmailError: Empty or malformed email.
            AuthError: Provider rejected the request.
        """
        email = self._validate_email(email)
        try:
            await asyncio.to_thread(self._provider.recover, email, self._config.password_reset_url)
        except AuthProviderError as e:
            raise parse_provider_error(e) from e
        await self._audit(SecurityEvent.PASSWORD_RESET_REQUESTED, email=email)

    async def update_password(self, new_password: str) -> None:
        """Set a new password for the session opened by a reset link, then sign out locally.

        Raises:
            WeakPasswordError: Below the minimum length.
            SessionExpiredError: No session to authorize the change.
            AuthError: invalid_reset_token, or another provider failure.
        """
        if len(new_password or "") < self._config.min_password_length:
            raise WeakPasswordError(
                "Password too short",
                user_message=f"Password must be at least {self._config.min_password_length} characters long.",
            )

        session = await self._session_manager.get_session()
        if session is None:
            raise SessionExpiredError("No session for password update")

        try:
            await asyncio.to_thread(
                self._provider.update_user, session.access_token, {"password": new_password}
            )
        except AuthProviderError as e:
            message = e.message.lower()
            if e.status is not None and e.status < 500 and ("token" in message or "expired" in message):
                raise AuthError(e.message, code=AuthErrorCode.INVALID_RESET_TOKEN) from e
            raise parse_provider_error(e) from e

        await self._audit(
            SecurityEvent.PASSWORD_UPDATED,
            user_id=session.user.id if session.user is not None else None,
        )
        await self._session_manager.clear_session()

    def close(self) -> None:
        """Tear down the owned SessionManager (cancels timers)."""
        self._session_manager.destroy()

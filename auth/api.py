"""HTTP routes for sign-up, verification, the current user and sign-out.

The session travels in an httponly cookie (config.session_storage_key)
holding the session JSON. Each request hands it to a fresh SessionManager.
"""

import logging
from dataclasses import asdict
from typing import Callable
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import RedirectResponse
from pydantic import ValidationError

from api.base import success_response
from auth.config import AuthConfig
from auth.exceptions import AuthError, SessionExpiredError
from auth.service import AuthService
from auth.types import EmailRequest, Session, SignUpRequest, UserProfile, UserRole, VerificationStatus

logger = logging.getLogger(__name__)


def redirect_for_profile(profile: UserProfile, base_url: str) -> str:
    """Landing page after verification, by role and review status."""
    base_url = base_url.rstrip("/")
    if profile.role == UserRole.BUYER:
        return f"{base_url}/buyer/dashboard"
    if profile.role == UserRole.SELLER:
        if profile.verification_status == VerificationStatus.APPROVED:
            return f"{base_url}/seller/dashboard"
        return f"{base_url}/profile?message=verification_pending"
    if profile.role == UserRole.ADMIN:
        return f"{base_url}/admin"
    return f"{base_url}/profile?message=role_setup_needed"


def create_auth_router(
    service_factory: Callable[[], AuthService],
    config: AuthConfig | None = None,
) -> APIRouter:
    """Create auth router.

    service_factory builds one AuthService (and SessionManager) per request;
    it is closed when the request finishes.
    """
    config = config or AuthConfig()
    router = APIRouter(prefix="/auth", tags=["auth"])

    async def get_service():
        service = service_factory()
        try:
            yield service
        finally:
            service.close()

    def status_redirect(message: str) -> RedirectResponse:
        query = urlencode({"error": message})
        return RedirectResponse(f"{config.app_base_url.rstrip('/')}/auth/callback/status?{query}")

    secure_cookie = config.app_base_url.startswith("https://")

    def set_session_cookie(response: Response, session: Session) -> None:
        response.set_cookie(
            key=config.session_storage_key,
            value=session.model_dump_json(),
            httponly=True,
            secure=secure_cookie,
            samesite="lax",
            max_age=config.session_storage_ttl_days * 24 * 60 * 60,
        )

    def read_session_cookie(request: Request) -> Session | None:
        raw = request.cookies.get(config.session_storage_key)
        if not raw:
            return None
        try:
            return Session.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed session cookie: {e}")
            return None

    @router.post("/signup")
    async def sign_up(body: SignUpRequest, service: AuthService = Depends(get_service)):
        """Start sign-up. The account is usable only after the emailed link is followed.

        Returns:
            success=True, needs_verification=True, user=None
        """
        result = await service.sign_up(body.email, body.password, body.name, body.role)
        return success_response(asdict(result))

    @router.post("/resend-verification")
    async def resend_verification(body: EmailRequest, service: AuthService = Depends(get_service)):
        """Resend the sign-up verification email."""
        await service.resend_verification_email(body.email)
        return success_response({"sent": True})

    @router.get("/callback")
    async def auth_callback(
        token_hash: str | None = Query(None),
        error: str | None = Query(None),
        error_description: str | None = Query(None),
        service: AuthService = Depends(get_service),
    ):
        """Complete email verification, set the session cookie and redirect by role.

        Every failure redirects to /auth/callback/status with an error message.
        """
        if error:
            logger.warning(f"Verification callback returned error {error}: {error_description}")
            return status_redirect(error_description or error)
        if not token_hash:
            return status_redirect("Missing required parameters")

        try:
            profile = await service.verify_email(token_hash)
        except AuthError as e:
            logger.warning(f"Email verification failed: {e.code.value}: {e.message}")
            return status_redirect(e.user_message)
        except Exception:
            logger.exception("Verification callback failed")
            return status_redirect("An unexpected error occurred during authentication")

        response = RedirectResponse(redirect_for_profile(profile, config.app_base_url))
        session = service.session_manager.current_session
        if session is not None:
            set_session_cookie(response, session)
        return response

    @router.get("/me")
    async def get_current_user(
        request: Request,
        response: Response,
        service: AuthService = Depends(get_service),
    ):
        """Profile of the user whose session is in the cookie.

        A session refreshed on the way is written back to the cookie.

        Raises:
            SessionExpiredError: No cookie, or its session no longer resolves to a profile (401).
        """
        session = read_session_cookie(request)
        if session is None:
            raise SessionExpiredError("No session cookie")

        service.session_manager.adopt(session)
        profile = await service.get_current_user()
        if profile is None:
            raise SessionExpiredError("Session cookie does not resolve to a user")

        current = service.session_manager.current_session
        if current is not None and current is not session:
            set_session_cookie(response, current)
        return success_response(profile.model_dump(mode="json"))

    @router.post("/logout")
    async def logout(
        request: Request,
        response: Response,
        service: AuthService = Depends(get_service),
    ):
        """Sign out the cookie's session and clear the cookie. Always succeeds."""
        session = read_session_cookie(request)
        if session is not None:
            service.session_manager.adopt(session)
            await service.sign_out()

        response.delete_cookie(
            key=config.session_storage_key,
            httponly=True,
            secure=secure_cookie,
            samesite="lax",
        )
        return success_response({"signed_out": True})

    return router

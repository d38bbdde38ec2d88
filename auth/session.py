"""Session token lifecycle management.

One SessionManager owns one session at a time. It is the single authority
for reading, validating, refreshing and tearing down that session:

- at most one refresh exchange is in flight; concurrent callers share it
- exactly one auto-refresh timer is armed, REFRESH_LEAD_SECONDS before expiry
- teardown is unconditional locally, best-effort on the provider
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable

from pydantic import ValidationError

from auth.config import AuthConfig
from auth.events import AuthEvent, AuthEventBus, AuthStateChange, AuthStateHandler
from auth.exceptions import AuthError, TokenRefreshFailedError
from auth.session_store import SessionStore
from auth.types import Session
from clients.auth_provider_client import AuthProviderClient

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Lifecycle of the managed session."""

    IDLE = "idle"
    VALID = "valid"
    REFRESHING = "refreshing"
    INVALID = "invalid"


class SessionManager:
    """Session retrieval, validity, refresh and teardown.

    All methods must be called from the event loop that owns the instance.
    Provider calls run in worker threads and never block the loop.
    """

    VALIDITY_BUFFER_SECONDS = 30
    REFRESH_LEAD_SECONDS = 300

    def __init__(
        self,
        provider: AuthProviderClient,
        config: AuthConfig,
        store: SessionStore | None = None,
        events: AuthEventBus | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._provider = provider
        self._config = config
        self._store = store
        self._events = events or AuthEventBus()
        self._clock = clock

        self._session: Session | None = None
        self._restored = store is None
        self._invalid = False
        self._destroyed = False

        self._refresh_task: asyncio.Task | None = None
        self._refresh_handle: asyncio.TimerHandle | None = None
        self._refresh_scheduled_at: float | None = None
        self._background: set[asyncio.Task] = set()

    @property
    def events(self) -> AuthEventBus:
        return self._events

    @property
    def current_session(self) -> Session | None:
        """The cached session as-is, without validity checks."""
        return self._session

    @property
    def refresh_scheduled_at(self) -> float | None:
        """Epoch seconds at which the armed refresh timer fires, or None."""
        return self._refresh_scheduled_at

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    @property
    def state(self) -> SessionState:
        if self._refresh_task is not None:
            return SessionState.REFRESHING
        if self._invalid:
            return SessionState.INVALID
        if self._session is None:
            return SessionState.IDLE
        if self.is_session_valid(self._session):
            return SessionState.VALID
        return SessionState.INVALID

    def on_auth_state_change(self, handler: AuthStateHandler) -> Callable[[], None]:
        """Subscribe to SIGNED_IN / SIGNED_OUT / TOKEN_REFRESHED. Returns a disposer."""
        return self._events.subscribe(handler)

    def is_session_valid(self, session: Session | None) -> bool:
        """False for None, a missing access token, a missing expiry, or
        an expiry less than VALIDITY_BUFFER_SECONDS away."""
        if session is None or not session.access_token or session.expires_at is None:
            return False
        return session.expires_at - self._clock() >= self.VALIDITY_BUFFER_SECONDS

    async def get_session(self) -> Session | None:
        """Current valid session, or None. Never raises.

        The first call restores a persisted session. An invalid session
        that still carries a refresh token is refreshed on the way out.
        """
        try:
            if not self._restored:
                self._restored = True
                stored = await asyncio.to_thread(self._store.load)
                if stored is not None and self._session is None and not self._destroyed:
                    logger.info("Restored persisted session")
                    self._session = stored

            session = self._session
            if session is None:
                return None

            if self.is_session_valid(session):
                if self._refresh_handle is None and self._refresh_task is None:
                    self.setup_auto_refresh(session)
                return session

            return await self.refresh_session()
        except AuthError as e:
            logger.warning(f"No usable session: {e.message}")
            return None
        except Exception:
            logger.exception("Failed to get session")
            return None

    def _parse_session(self, payload: dict[str, Any]) -> Session:
        try:
            return Session.from_provider(payload, now=self._clock())
        except ValidationError as e:
            logger.error(f"Provider returned a malformed session: {e}")
            raise AuthError("Malformed session returned by auth provider") from e

    async def _establish(self, session: Session, event: AuthEvent) -> None:
        """Make session current, arm its refresh timer, persist and announce it."""
        self._session = session
        self._invalid = False
        self._restored = True
        self.setup_auto_refresh(session)
        if self._store is not None:
            await asyncio.to_thread(self._store.save, session)
        self._events.publish(AuthStateChange(event=event, session=session))

    def adopt(self, session: Session) -> None:
        """Take over a session carried in from outside, such as a request cookie.

        Nothing is published or persisted. The next get_session() validates
        it and refreshes it if needed.
        """
        if self._destroyed:
            return
        self._cancel_refresh_timer()
        self._session = session
        self._invalid = False
        self._restored = True

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        """Exchange credentials for a new session.

        Raises:
            AuthProviderError: Provider rejected the credentials or is unreachable.
            AuthError: Provider answered with a malformed session.
        """
        payload = await asyncio.to_thread(self._provider.sign_in_with_password, email, password)
        session = self._parse_session(payload)
        await self._establish(session, AuthEvent.SIGNED_IN)
        logger.info("Signed in")
        return session

    async def verify_otp(self, token_hash: str, type: str = "signup") -> Session | None:
        """Exchange an emailed verification token for a session.

        Returns None when the provider verifies the token but issues no session.

        Raises:
            AuthProviderError: Token unknown, expired or already used.
        """
        payload = await asyncio.to_thread(self._provider.verify_otp, token_hash, type)
        if not payload.get("access_token") or not payload.get("refresh_token"):
            return None
        session = self._parse_session(payload)
        await self._establish(session, AuthEvent.SIGNED_IN)
        return session

    async def refresh_session(self) -> Session:
        """Exchange the refresh token for a new session.

        Concurrent callers attach to the in-flight exchange and receive its
        result or its error. The shared exchange is shielded: cancelling one
        caller does not cancel it for the others.

        Raises:
            TokenRefreshFailedError: No refresh token, or the provider rejected it.
        """
        if self._refresh_task is None:
            task = asyncio.ensure_future(self._perform_refresh())
            self._refresh_task = task
            task.add_done_callback(self._release_refresh_slot)
        return await asyncio.shield(self._refresh_task)

    def _release_refresh_slot(self, task: asyncio.Task) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        if not task.cancelled():
            # Mark retrieved; every awaiting caller already received it.
            task.exception()

    async def _perform_refresh(self) -> Session:
        session = self._session
        if session is None or not session.refresh_token:
            raise TokenRefreshFailedError("No refresh token available")

        try:
            payload = await asyncio.to_thread(self._provider.refresh_session, session.refresh_token)
            refreshed = self._parse_session(payload)
        except Exception as e:
            logger.error(f"Token refresh failed: {e}")
            if self._session is session and not self._destroyed:
                self._invalid = True
            raise TokenRefreshFailedError(str(e)) from e

        if self._destroyed or self._session is not session:
            logger.info("Discarding refreshed session: session changed or manager destroyed")
            return refreshed

        await self._establish(refreshed, AuthEvent.TOKEN_REFRESHED)
        logger.info("Session refreshed")
        return refreshed

    def setup_auto_refresh(self, session: Session | None) -> None:
        """Arm one timer that refreshes REFRESH_LEAD_SECONDS before expiry.

        Any previously armed timer is cancelled first. Nothing is armed when
        that instant has already passed; the caller must re-authenticate.
        """
        self._cancel_refresh_timer()
        if self._destroyed or session is None or not session.access_token or session.expires_at is None:
            return

        refresh_at = session.expires_at - self.REFRESH_LEAD_SECONDS
        delay = refresh_at - self._clock()
        if delay < 0:
            logger.info("Session expires within the refresh lead time; no auto-refresh scheduled")
            return

        loop = asyncio.get_running_loop()
        self._refresh_handle = loop.call_later(delay, self._start_auto_refresh, session, 0)
        self._refresh_scheduled_at = refresh_at

    def _cancel_refresh_timer(self) -> None:
        if self._refresh_handle is not None:
            self._refresh_handle.cancel()
        self._refresh_handle = None
        self._refresh_scheduled_at = None

    def _start_auto_refresh(self, session: Session, attempt: int) -> None:
        self._refresh_handle = None
        self._refresh_scheduled_at = None
        if self._destroyed or self._session is not session:
            return
        task = asyncio.ensure_future(self._auto_refresh(session, attempt))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _auto_refresh(self, session: Session, attempt: int) -> None:
        """Timer-driven refresh with exponential backoff, then give up and clear.

        A failure only counts against session, the one the timer was armed
        for. If another session was established meanwhile it owns the timer.
        """
        try:
            await self.refresh_session()
            return
        except AuthError as e:
            logger.warning(f"Auto-refresh attempt {attempt + 1} failed: {e.message}")

        if self._destroyed or self._session is not session:
            return

        if attempt < self._config.auto_refresh_max_retries:
            delay = self._config.auto_refresh_base_delay_seconds * (2 ** attempt)
            self._cancel_refresh_timer()
            loop = asyncio.get_running_loop()
            self._refresh_handle = loop.call_later(delay, self._start_auto_refresh, session, attempt + 1)
            self._refresh_scheduled_at = self._clock() + delay
            return

        logger.error("Auto-refresh failed after maximum retries. Re-authentication required.")
        await self.clear_session()
        self._invalid = True

    async def clear_session(self) -> None:
        """Sign out. Never raises.

        The local session, timer and persisted copy are always dropped, even
        when the provider call fails.
        """
        session = self._session
        self._session = None
        self._invalid = False
        self._restored = True
        self._cancel_refresh_timer()

        if session is not None and session.access_token:
            try:
                await asyncio.to_thread(self._provider.sign_out, session.access_token)
            except Exception as e:
                logger.warning(f"Provider sign-out failed, local session cleared anyway: {e}")

        if self._store is not None:
            await asyncio.to_thread(self._store.clear)

        if not self._destroyed:
            self._events.publish(AuthStateChange(event=AuthEvent.SIGNED_OUT, session=None))

    def destroy(self) -> None:
        """Cancel pending timers and stop accepting late results. Idempotent."""
        self._destroyed = True
        self._cancel_refresh_timer()

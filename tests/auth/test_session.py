"""Tests for SessionManager - validity, refresh and teardown of the provider session."""

import asyncio
import threading
import time

import pytest

from auth.events import AuthEvent, AuthEventBus
from auth.exceptions import TokenRefreshFailedError
from auth.session import SessionManager, SessionState
from auth.types import Session
from clients.auth_provider_client import AuthProviderError


async def wait_for(predicate, timeout: float = 2.0) -> None:
    """Yield to the loop until predicate() holds."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def recorded_events(session_manager):
    """List of AuthStateChange received by a subscriber."""
    received = []
    session_manager.on_auth_state_change(received.append)
    return received


async def sign_in(manager, provider, payload) -> Session:
    provider.sign_in_with_password.return_value = payload
    return await manager.sign_in_with_password("farmer@agrolinkfarms.com", "s3cret-pass")


class TestIsSessionValid:
    """Validity requires an access token and at least 30 seconds left."""

    def make(self, clock, expires_in, access_token="token"):
        return Session(
            access_token=access_token,
            refresh_token="refresh",
            expires_at=int(clock()) + expires_in if expires_in is not None else None,
        )

    def test_none_is_invalid(self, session_manager):
        assert session_manager.is_session_valid(None) is False

    def test_missing_access_token_is_invalid(self, session_manager, clock):
        assert session_manager.is_session_valid(self.make(clock, 3600, access_token=None)) is False

    def test_missing_expiry_is_invalid(self, session_manager, clock):
        assert session_manager.is_session_valid(self.make(clock, None)) is False

    def test_exactly_buffer_is_valid(self, session_manager, clock):
        assert session_manager.is_session_valid(self.make(clock, 30)) is True

    def test_inside_buffer_is_invalid(self, session_manager, clock):
        assert session_manager.is_session_valid(self.make(clock, 29)) is False

    def test_expired_is_invalid(self, session_manager, clock):
        assert session_manager.is_session_valid(self.make(clock, -10)) is False

    def test_validity_follows_clock(self, session_manager, clock):
        session = self.make(clock, 100)
        assert session_manager.is_session_valid(session) is True

        clock.advance(71)

        assert session_manager.is_session_valid(session) is False


class TestSignIn:
    """Establishing a session from credentials."""

    async def test_sets_current_session(self, session_manager, provider, session_payload):
        session = await sign_in(session_manager, provider, session_payload())

        assert session_manager.current_session == session
        assert session_manager.state == SessionState.VALID
        provider.sign_in_with_password.assert_called_once_with("farmer@agrolinkfarms.com", "s3cret-pass")

    async def test_publishes_signed_in(self, session_manager, provider, session_payload, recorded_events):
        await sign_in(session_manager, provider, session_payload())
        await session_manager.events.wait_idle()

        assert [e.event for e in recorded_events] == [AuthEvent.SIGNED_IN]
        assert recorded_events[0].session == session_manager.current_session

    async def test_provider_error_propagates(self, session_manager, provider):
        provider.sign_in_with_password.side_effect = AuthProviderError("Invalid login credentials", 400)

        with pytest.raises(AuthProviderError):
            await session_manager.sign_in_with_password("farmer@agrolinkfarms.com", "wrong")

        assert session_manager.current_session is None

    async def test_fills_expires_at_from_expires_in(self, session_manager, provider, session_payload, clock):
        payload = session_payload(expires_in=1200)
        del payload["expires_at"]

        session = await sign_in(session_manager, provider, payload)

        assert session.expires_at == int(clock()) + 1200


class TestAutoRefreshScheduling:
    """One timer, armed 300 seconds before expiry."""

    async def test_timer_at_expiry_minus_lead(self, session_manager, provider, session_payload):
        session = await sign_in(session_manager, provider, session_payload(expires_in=3600))

        assert session_manager.refresh_scheduled_at == session.expires_at - 300

    async def test_no_timer_inside_lead_window(self, session_manager, provider, session_payload):
        await sign_in(session_manager, provider, session_payload(expires_in=299))

        assert session_manager.refresh_scheduled_at is None

    async def test_timer_at_exact_lead_boundary(self, session_manager, provider, session_payload, clock):
        session = await sign_in(session_manager, provider, session_payload(expires_in=300))

        assert session_manager.refresh_scheduled_at == session.expires_at - 300 == int(clock())

    async def test_rearm_replaces_previous_timer(self, session_manager, provider, session_payload):
        await sign_in(session_manager, provider, session_payload(expires_in=3600))
        second = await sign_in(session_manager, provider, session_payload(expires_in=7200))

        assert session_manager.refresh_scheduled_at == second.expires_at - 300

    async def test_timer_fires_refresh(self, session_manager, provider, session_payload, recorded_events):
        """A session at exactly the lead boundary refreshes on the next loop tick."""
        await sign_in(session_manager, provider, session_payload(expires_in=300, refresh_token="refresh-old"))
        provider.refresh_session.return_value = session_payload(access_token="access-new")

        await wait_for(lambda: provider.refresh_session.called and session_manager.state != SessionState.REFRESHING)

        provider.refresh_session.assert_called_once_with("refresh-old")
        assert session_manager.current_session.access_token == "access-new"
        await session_manager.events.wait_idle()
        assert AuthEvent.TOKEN_REFRESHED in [e.event for e in recorded_events]

    async def test_backoff_then_gives_up(self, session_manager, provider, session_payload, recorded_events):
        """Retries max_retries times, then clears the session and stays invalid."""
        await sign_in(session_manager, provider, session_payload(expires_in=300))
        provider.refresh_session.side_effect = AuthProviderError("Service unavailable", 503)

        await wait_for(lambda: session_manager.current_session is None and session_manager.state == SessionState.INVALID)

        assert provider.refresh_session.call_count == 3
        provider.sign_out.assert_called_once()
        assert session_manager.refresh_scheduled_at is None
        await session_manager.events.wait_idle()
        assert recorded_events[-1].event == AuthEvent.SIGNED_OUT

    async def test_stale_failure_leaves_new_session_timer(self, session_manager, provider, session_payload):
        """A refresh failing for a replaced session neither re-arms nor touches the new one."""
        release = threading.Event()

        def blocked_refresh(token):
            release.wait(timeout=2)
            raise AuthProviderError("Service unavailable", 503)

        provider.refresh_session.side_effect = blocked_refresh
        await sign_in(session_manager, provider, session_payload(expires_in=300, refresh_token="refresh-old"))
        await wait_for(lambda: provider.refresh_session.called)

        second = await sign_in(session_manager, provider, session_payload(expires_in=7200, refresh_token="refresh-second"))
        release.set()
        await wait_for(lambda: session_manager.state != SessionState.REFRESHING)
        await asyncio.sleep(0.1)

        assert [c.args[0] for c in provider.refresh_session.call_args_list] == ["refresh-old"]
        assert session_manager.current_session == second
        assert session_manager.state == SessionState.VALID
        assert session_manager.refresh_scheduled_at == second.expires_at - 300

        session_manager.destroy()
        assert session_manager.refresh_scheduled_at is None


class TestRefreshSession:
    """Explicit refresh and concurrent de-duplication."""

    async def test_concurrent_callers_share_one_exchange(self, session_manager, provider, session_payload):
        await sign_in(session_manager, provider, session_payload())
        refreshed = session_payload(access_token="access-shared")

        def slow_refresh(token):
            time.sleep(0.05)
            return refreshed

        provider.refresh_session.side_effect = slow_refresh

        results = await asyncio.gather(*(session_manager.refresh_session() for _ in range(5)))

        assert provider.refresh_session.call_count == 1
        assert all(r.access_token == "access-shared" for r in results)
        assert session_manager.current_session.access_token == "access-shared"

    async def test_concurrent_callers_share_failure(self, session_manager, provider, session_payload):
        await sign_in(session_manager, provider, session_payload())

        def failing_refresh(token):
            time.sleep(0.05)
            raise AuthProviderError("Invalid Refresh Token: Refresh Token Not Found", 400)

        provider.refresh_session.side_effect = failing_refresh

        results = await asyncio.gather(
            session_manager.refresh_session(),
            session_manager.refresh_session(),
            return_exceptions=True,
        )

        assert provider.refresh_session.call_count == 1
        assert all(isinstance(r, TokenRefreshFailedError) for r in results)
        assert session_manager.state == SessionState.INVALID

    async def test_new_exchange_after_previous_finished(self, session_manager, provider, session_payload):
        await sign_in(session_manager, provider, session_payload())
        provider.refresh_session.side_effect = [session_payload(), session_payload()]

        await session_manager.refresh_session()
        await session_manager.refresh_session()

        assert provider.refresh_session.call_count == 2

    async def test_without_session_raises(self, session_manager, provider):
        with pytest.raises(TokenRefreshFailedError):
            await session_manager.refresh_session()

        provider.refresh_session.assert_not_called()

    async def test_cancelling_one_caller_keeps_exchange(self, session_manager, provider, session_payload):
        await sign_in(session_manager, provider, session_payload())

        def slow_refresh(token):
            time.sleep(0.05)
            return session_payload(access_token="access-after-cancel")

        provider.refresh_session.side_effect = slow_refresh

        first = asyncio.ensure_future(session_manager.refresh_session())
        second = asyncio.ensure_future(session_manager.refresh_session())
        await asyncio.sleep(0)
        first.cancel()

        result = await second

        assert result.access_token == "access-after-cancel"
        assert provider.refresh_session.call_count == 1


class TestGetSession:
    """Presence check: returns a usable session or None, never raises."""

    async def test_none_without_session(self, session_manager):
        assert await session_manager.get_session() is None

    async def test_returns_valid_session(self, session_manager, provider, session_payload):
        session = await sign_in(session_manager, provider, session_payload())

        assert await session_manager.get_session() == session
        provider.refresh_session.assert_not_called()

    async def test_refreshes_expired_session(self, session_manager, provider, session_payload, clock):
        await sign_in(session_manager, provider, session_payload(expires_in=600))
        clock.advance(590)
        provider.refresh_session.return_value = session_payload(access_token="access-fresh")

        session = await session_manager.get_session()

        assert session.access_token == "access-fresh"

    async def test_refresh_failure_returns_none(self, session_manager, provider, session_payload, clock):
        await sign_in(session_manager, provider, session_payload(expires_in=600))
        clock.advance(600)
        provider.refresh_session.side_effect = AuthProviderError("Network down")

        assert await session_manager.get_session() is None
        assert session_manager.state == SessionState.INVALID

    async def test_restores_persisted_session(self, provider, config, clock, session_store, session_payload):
        stored = Session.from_provider(session_payload(access_token="access-stored"), now=clock())
        session_store.save(stored)
        manager = SessionManager(provider, config, store=session_store, events=AuthEventBus(), clock=clock)

        try:
            session = await manager.get_session()
        finally:
            manager.destroy()

        assert session.access_token == "access-stored"

    async def test_persists_established_session(self, provider, config, clock, session_store, session_payload):
        manager = SessionManager(provider, config, store=session_store, events=AuthEventBus(), clock=clock)
        try:
            session = await sign_in(manager, provider, session_payload())
        finally:
            manager.destroy()

        assert session_store.load() == session


class TestAdopt:
    """A session handed in from a request cookie."""

    async def test_becomes_current_without_event(self, session_manager, session_payload, recorded_events):
        session = Session.model_validate(session_payload())

        session_manager.adopt(session)

        assert await session_manager.get_session() == session
        await session_manager.events.wait_idle()
        assert recorded_events == []

    async def test_ignored_after_destroy(self, session_manager, session_payload):
        session_manager.destroy()

        session_manager.adopt(Session.model_validate(session_payload()))

        assert session_manager.current_session is None


class TestVerifyOtp:
    """Exchanging a verification token."""

    async def test_establishes_session(self, session_manager, provider, session_payload, recorded_events):
        provider.verify_otp.return_value = session_payload()

        session = await session_manager.verify_otp("hash-123")

        provider.verify_otp.assert_called_once_with("hash-123", "signup")
        assert session_manager.current_session == session
        await session_manager.events.wait_idle()
        assert recorded_events[0].event == AuthEvent.SIGNED_IN

    async def test_no_tokens_returns_none(self, session_manager, provider):
        provider.verify_otp.return_value = {"user": {"id": "00000000-0000-0000-0000-000000000001"}}

        assert await session_manager.verify_otp("hash-123") is None
        assert session_manager.current_session is None


class TestClearSession:
    """Teardown is unconditional locally."""

    async def test_clears_and_signs_out(self, session_manager, provider, session_payload, recorded_events):
        session = await sign_in(session_manager, provider, session_payload())

        await session_manager.clear_session()

        provider.sign_out.assert_called_once_with(session.access_token)
        assert session_manager.current_session is None
        assert session_manager.refresh_scheduled_at is None
        await session_manager.events.wait_idle()
        assert recorded_events[-1].event == AuthEvent.SIGNED_OUT
        assert recorded_events[-1].session is None

    async def test_provider_failure_still_clears(self, session_manager, provider, session_payload):
        await sign_in(session_manager, provider, session_payload())
        provider.sign_out.side_effect = AuthProviderError("Network down")

        await session_manager.clear_session()

        assert session_manager.current_session is None
        assert session_manager.state == SessionState.IDLE

    async def test_removes_persisted_copy(self, provider, config, clock, session_store, session_payload):
        manager = SessionManager(provider, config, store=session_store, events=AuthEventBus(), clock=clock)
        try:
            await sign_in(manager, provider, session_payload())
            await manager.clear_session()
        finally:
            manager.destroy()

        assert session_store.load() is None

    async def test_without_session_skips_provider(self, session_manager, provider):
        await session_manager.clear_session()

        provider.sign_out.assert_not_called()


class TestDestroy:
    """Late results are discarded after destroy()."""

    async def test_cancels_timer(self, session_manager, provider, session_payload):
        await sign_in(session_manager, provider, session_payload())

        session_manager.destroy()

        assert session_manager.refresh_scheduled_at is None
        assert session_manager.is_destroyed

    async def test_refresh_finishing_after_destroy_is_discarded(
        self, session_manager, provider, session_payload, recorded_events
    ):
        original = await sign_in(session_manager, provider, session_payload())
        await session_manager.events.wait_idle()
        recorded_events.clear()

        def slow_refresh(token):
            time.sleep(0.05)
            return session_payload(access_token="access-late")

        provider.refresh_session.side_effect = slow_refresh

        pending = asyncio.ensure_future(session_manager.refresh_session())
        await asyncio.sleep(0)
        session_manager.destroy()
        await pending

        assert session_manager.current_session == original
        assert session_manager.refresh_scheduled_at is None
        await session_manager.events.wait_idle()
        assert recorded_events == []

    async def test_idempotent(self, session_manager):
        session_manager.destroy()
        session_manager.destroy()

        assert session_manager.is_destroyed

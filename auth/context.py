"""
Auth state holder for UI consumers.

AuthContext keeps {user, is_authenticated, loading, initializing} in sync
with the SessionManager's auth events. Every event re-resolves the current
user; a generation counter drops resolutions overtaken by a newer event.
"""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Callable

from auth.events import AuthEvent, AuthStateChange
from auth.service import AuthService
from auth.types import SignUpResult, UserProfile, UserRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthState:
    """Snapshot of the auth state exposed to the UI."""

    user: UserProfile | None = None
    loading: bool = False
    initializing: bool = True

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None


AuthStateListener = Callable[[AuthState], None]


class AuthContext:
    """Reactive auth state for one mounted UI tree."""

    def __init__(self, service: AuthService):
        self._service = service
        self._state = AuthState()
        self._listeners: list[AuthStateListener] = []
        self._unsubscribe: Callable[[], None] | None = None
        self._mounted = False
        self._generation = 0

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def user(self) -> UserProfile | None:
        return self._state.user

    @property
    def is_authenticated(self) -> bool:
        return self._state.is_authenticated

    @property
    def loading(self) -> bool:
        return self._state.loading

    @property
    def initializing(self) -> bool:
        return self._state.initializing

    def on_change(self, listener: AuthStateListener) -> Callable[[], None]:
        """Register a listener for state snapshots; returns a disposer."""
        self._listeners.append(listener)

        def dispose() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return dispose

    def _set(self, **changes) -> None:
        self._state = dataclasses.replace(self._state, **changes)
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("Auth state listener failed")

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation

    async def start(self) -> None:
        """Subscribe to auth events and resolve the initial user."""
        if self._mounted:
            return
        self._mounted = True
        self._set(initializing=True)
        self._unsubscribe = self._service.session_manager.on_auth_state_change(self._handle_change)

        generation = self._next_generation()
        user = await self._service.get_current_user()
        if not self._mounted:
            return
        if generation == self._generation:
            self._set(user=user, initializing=False)
        else:
            self._set(initializing=False)

    def stop(self) -> None:
        """Unsubscribe. Resolutions still in flight are discarded."""
        self._mounted = False
        self._generation += 1
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def _handle_change(self, change: AuthStateChange) -> None:
        if not self._mounted:
            return
        generation = self._next_generation()

        if change.event == AuthEvent.SIGNED_OUT or change.session is None:
            self._set(user=None)
            return

        user = await self._service.get_current_user()
        if self._mounted and generation == self._generation:
            self._set(user=user)

    async def sign_up(self, email: str, password: str, name: str, role: UserRole | str) -> SignUpResult:
        self._set(loading=True)
        try:
            return await self._service.sign_up(email, password, name, role)
        finally:
            self._set(loading=False)

    async def sign_in(self, email: str, password: str) -> UserProfile:
        self._set(loading=True)
        try:
            user = await self._service.sign_in(email, password)
            if self._mounted:
                self._next_generation()
                self._set(user=user)
            return user
        finally:
            self._set(loading=False)

    async def sign_out(self) -> None:
        self._set(loading=True)
        try:
            await self._service.sign_out()
            self._next_generation()
            self._set(user=None)
        finally:
            self._set(loading=False)

"""
Auth state change events.

Asynchronous in-process pub/sub. Each handler runs as its own task, so a
handler may call back into the SessionManager (e.g. get_session) without
waiting on the operation that published the event. Handler errors are
logged but never propagate to the publisher.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable
from uuid import uuid4

from auth.types import Session
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class AuthEvent(str, Enum):
    """Auth lifecycle transitions visible to subscribers."""

    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


@dataclass(frozen=True, kw_only=True)
class AuthStateChange:
    """One auth transition and the session in force after it (None once signed out)."""

    event: AuthEvent
    session: Session | None = None
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


AuthStateHandler = Callable[[AuthStateChange], Awaitable[Any] | Any]


class AuthEventBus:
    """
    Fan-out of AuthStateChange to subscribers.

    subscribe() returns a disposer; calling it more than once is harmless.
    """

    def __init__(self):
        self._handlers: list[AuthStateHandler] = []
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, handler: AuthStateHandler) -> Callable[[], None]:
        """Register handler; returns a function that unregisters it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def publish(self, change: AuthStateChange) -> None:
        """
        Schedule every current subscriber with the change.

        Must be called from a running event loop. Handlers subscribed after
        this call do not see the change.
        """
        for handler in list(self._handlers):
            task = asyncio.ensure_future(self._run(handler, change))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _run(self, handler: AuthStateHandler, change: AuthStateChange) -> None:
        try:
            result = handler(change)
            if inspect.isawaitable(result):
                await result
        except Exception:
            name = getattr(handler, "__name__", repr(handler))
            logger.exception(f"Auth state handler {name} failed for {change.event.value} (event_id={change.event_id})")

    async def wait_idle(self) -> None:
        """Wait until every scheduled handler has finished, including ones they trigger."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

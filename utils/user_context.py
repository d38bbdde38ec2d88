"""Propagate the acting identity through the call stack using contextvars.

The profile store reads this to scope row-level security. asyncio.to_thread
copies the current context, so a value set in a coroutine is visible to the
worker thread that runs the query.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from uuid import UUID

_current_user_id: ContextVar[UUID | None] = ContextVar("current_user_id", default=None)


def get_current_user_id() -> UUID | None:
    """
    Get the acting identity id from context, or None outside any scope.

    Audit writes run without an identity; the database then matches no
    RLS-protected rows for them.
    """
    return _current_user_id.get()


def set_current_user_id(user_id: UUID) -> None:
    """Set the acting identity id in context."""
    _current_user_id.set(user_id)


def clear_current_user_id() -> None:
    """Clear the acting identity id."""
    _current_user_id.set(None)


@contextmanager
def user_context(user_id: UUID):
    """
    Temporarily act as an identity.

    Example:
        with user_context(session.user.id):
            profile = profiles.get_profile(session.user.id)
    """
    previous = _current_user_id.get()
    set_current_user_id(user_id)
    try:
        yield
    finally:
        if previous is None:
            clear_current_user_id()
        else:
            set_current_user_id(previous)

"""Persisted copy of the current session, so a restart can restore it.

Stored in Valkey under a single key with a TTL. Persistence is best-effort:
a failing store degrades to "nothing stored" and never breaks an auth flow.
"""

import logging

from pydantic import ValidationError

from auth.config import AuthConfig
from auth.types import Session
from clients.valkey_client import ValkeyClient

logger = logging.getLogger(__name__)


class SessionStore:
    """Load/save/clear one session under config.session_storage_key."""

    def __init__(self, valkey: ValkeyClient, config: AuthConfig):
        self._valkey = valkey
        self._key = config.session_storage_key
        self._ttl_seconds = config.session_storage_ttl_days * 86400

    def load(self) -> Session | None:
        """Stored session, or None if absent, unreadable or the store is down."""
        try:
            data = self._valkey.get_json(self._key)
        except Exception as e:
            logger.error(f"Failed to read persisted session: {e}")
            return None

        if not data:
            return None

        try:
            return Session.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Discarding malformed persisted session: {e}")
            return None

    def save(self, session: Session) -> None:
        """Persist session, replacing any previous one."""
        try:
            self._valkey.set_json(
                self._key,
                session.model_dump(mode="json"),
                expire_seconds=self._ttl_seconds,
            )
        except Exception as e:
            logger.error(f"Failed to persist session: {e}")

    def clear(self) -> None:
        """Remove the persisted session. Safe when nothing is stored."""
        try:
            self._valkey.delete(self._key)
        except Exception as e:
            logger.error(f"Failed to clear persisted session: {e}")

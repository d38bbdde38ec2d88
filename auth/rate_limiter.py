"""Sign-up cooldown per email address.

Valkey SET NX EX: the first attempt claims the key for the cooldown window,
any further attempt inside the window is rejected with the remaining TTL.
"""

from auth.config import AuthConfig
from auth.exceptions import AuthErrorCode, RateLimitedError
from clients.valkey_client import ValkeyClient


class RateLimiter:
    """Sign-up cooldown backed by Valkey."""

    KEY_PREFIX = "ratelimit:signup:"

    def __init__(self, valkey: ValkeyClient, config: AuthConfig):
        self._valkey = valkey
        self._cooldown_seconds = config.signup_cooldown_seconds

    def _key(self, email: str) -> str:
        """Rate limit key for email (normalized to lowercase)."""
        return f"{self.KEY_PREFIX}{email.lower()}"

    def check_signup_cooldown(self, email: str) -> None:
        """Record a sign-up attempt, rejecting it if one happened within the window.

        Raises:
            RateLimitedError: code signup_cooldown, with the seconds left.
        """
        key = self._key(email)
        if self._valkey.set_if_absent(key, self._cooldown_seconds):
            return

        retry_after = max(self._valkey.ttl(key), 1)
        raise RateLimitedError(retry_after_seconds=retry_after, code=AuthErrorCode.SIGNUP_COOLDOWN)

    def reset(self, email: str) -> None:
        """Drop the cooldown for email."""
        self._valkey.delete(self._key(email))

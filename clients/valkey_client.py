"""
Valkey (Redis-compatible) client for persisted sessions and signup cooldowns.

Thin wrapper around redis-py. Fail-fast: raises on connection failure and
never substitutes fallback values; callers decide what a failure means.
"""

import json
import logging

import redis

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    Redis-compatible client for Valkey.

    Usage:
        client = ValkeyClient("redis://localhost:6379/0")
        client.set_json("agrolink-auth-token", {...}, expire_seconds=3600)
        claimed = client.set_if_absent("ratelimit:signup:a@b.c", expire_seconds=5)
    """

    def __init__(self, url: str):
        """
        Connect and verify connectivity immediately.

        Raises:
            redis.ConnectionError: If Valkey is unreachable
        """
        self._client = redis.from_url(url, decode_responses=True)
        self._client.ping()
        logger.info("ValkeyClient connected")

    def get_json(self, key: str) -> dict | None:
        """
        Get and deserialize a JSON object.

        Returns None if the key doesn't exist.
        Raises ValueError if the stored value is not valid JSON.
        """
        value = self._client.get(key)
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in key '{key}': {e}")

    def set_json(self, key: str, value: dict, expire_seconds: int | None = None) -> None:
        """Store a JSON-serialized object, optionally with a TTL."""
        self._client.set(key, json.dumps(value), ex=expire_seconds)

    def set_if_absent(self, key: str, expire_seconds: int) -> bool:
        """
        Atomically claim a key for expire_seconds (SET NX EX).

        Returns True if the key was claimed, False if it already existed.
        """
        return bool(self._client.set(key, "1", nx=True, ex=expire_seconds))

    def ttl(self, key: str) -> int:
        """
        Remaining TTL in seconds.

        Returns -2 if the key doesn't exist, -1 if it has no expiration.
        """
        return self._client.ttl(key)

    def delete(self, key: str) -> bool:
        """Delete key. Returns True if it existed."""
        return self._client.delete(key) > 0

    def close(self) -> None:
        """Close the connection."""
        self._client.close()
        logger.info("ValkeyClient closed")

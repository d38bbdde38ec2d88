"""Security event logging for the auth audit trail.

Append-only rows in security_events (no RLS).
"""

from enum import Enum
from typing import Any
from uuid import UUID

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from utils.timezone import now_utc


class SecurityEvent(Enum):
    """Auth security event types."""

    SIGNUP_REQUESTED = "signup_requested"
    SIGNUP_COOLDOWN = "signup_cooldown"
    VERIFICATION_RESENT = "verification_resent"
    EMAIL_VERIFIED = "email_verified"
    VERIFICATION_FAILED = "verification_failed"
    PROFILE_CREATED = "profile_created"
    SIGNED_IN = "signed_in"
    SIGN_IN_FAILED = "sign_in_failed"
    SIGNED_OUT = "signed_out"
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    PASSWORD_UPDATED = "password_updated"


class SecurityLogger:
    """Append-only security event logger."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def log(
        self,
        event: SecurityEvent,
        email: str | None = None,
        user_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Write one security event."""
        self._db.execute(
            """INSERT INTO security_events (event_type, email, user_id, details, created_at)
               VALUES (%s, %s, %s, %s, %s)""",
            (
                event.value,
                email,
                user_id,
                Json(details) if details else None,
                now_utc(),
            ),
        )

    def get_recent_events(
        self,
        email: str | None = None,
        event_type: SecurityEvent | None = None,
        limit: int = 100,
    ) -> list[dict]:
        """Query recent security events with optional filters."""
        conditions = []
        params: list[Any] = []

        if email:
            conditions.append("email = %s")
            params.append(email)

        if event_type:
            conditions.append("event_type = %s")
            params.append(event_type.value)

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        params.append(limit)

        return self._db.execute(
            f"""SELECT id, event_type, email, user_id, details, created_at
                FROM security_events
                WHERE {where_clause}
                ORDER BY created_at DESC
                LIMIT %s""",
            tuple(params),
        )

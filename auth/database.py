"""Profile store: the application-owned users table.

Rows are keyed by the provider identity id and guarded by row-level
security, so every call must run inside user_context(identity_id).
"""

from typing import Any
from uuid import UUID

from auth.types import UserProfile, UserRole, VerificationStatus
from clients.postgres_client import PostgresClient
from utils.timezone import now_utc

_PROFILE_COLUMNS = "id, email, name, role, verification_status, created_at, updated_at"


class ProfileDatabase:
    """Read-by-id and upsert over the users table."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    @staticmethod
    def _to_profile(row: dict[str, Any]) -> UserProfile:
        return UserProfile(
            id=UUID(row["id"]) if isinstance(row["id"], str) else row["id"],
            email=row["email"],
            name=row["name"],
            role=row["role"],
            verification_status=row["verification_status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def get_profile(self, user_id: UUID) -> UserProfile | None:
        """Profile for identity id, or None."""
        row = self._db.execute_single(
            f"SELECT {_PROFILE_COLUMNS} FROM users WHERE id = %s",
            (user_id,),
        )
        return self._to_profile(row) if row else None

    def create_profile(
        self,
        user_id: UUID,
        email: str,
        name: str,
        role: UserRole,
        verification_status: VerificationStatus,
    ) -> UserProfile:
        """Insert the profile unless one exists; return the stored row.

        A concurrent creator wins harmlessly: ON CONFLICT leaves its row in
        place and the follow-up read returns it.
        """
        now = now_utc()
        self._db.execute(
            """INSERT INTO users (id, email, name, role, verification_status, created_at, updated_at)
               VALUES (%s, lower(%s), %s, %s, %s, %s, %s)
               ON CONFLICT (id) DO NOTHING""",
            (user_id, email, name, role.value, verification_status.value, now, now),
        )
        profile = self.get_profile(user_id)
        if profile is None:
            raise LookupError(f"Profile {user_id} not visible after insert")
        return profile

    def update_profile(self, user_id: UUID, name: str) -> UserProfile | None:
        """Update display name. Returns None if the profile doesn't exist."""
        row = self._db.execute_single(
            f"""UPDATE users SET name = %s, updated_at = %s
                WHERE id = %s
                RETURNING {_PROFILE_COLUMNS}""",
            (name, now_utc(), user_id),
        )
        return self._to_profile(row) if row else None

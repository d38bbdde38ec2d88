"""Pydantic models for the auth domain.

Provider responses are validated into these records at the boundary;
nothing downstream handles raw dicts.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class UserRole(str, Enum):
    """Marketplace roles."""

    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"


class VerificationStatus(str, Enum):
    """Profile review state. Buyers are approved on verification; sellers wait for review."""

    UNVERIFIED = "unverified"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AuthIdentity(BaseModel):
    """The provider's identity record bound to a session."""

    id: UUID
    email: str | None = None
    user_metadata: dict[str, Any] = Field(default_factory=dict)
    email_confirmed_at: datetime | None = None


class Session(BaseModel):
    """An access/refresh token pair issued by the provider.

    Immutable: a refresh yields a new Session.
    """

    access_token: str | None = None
    refresh_token: str = Field(..., min_length=1)
    token_type: str = "bearer"
    expires_in: int | None = None
    expires_at: int | None = Field(None, description="Expiry, epoch seconds")
    user: AuthIdentity | None = None

    model_config = {"frozen": True}

    @classmethod
    def from_provider(cls, payload: dict[str, Any], now: float) -> "Session":
        """Build from a provider token response.

        Fills expires_at from expires_in when the provider omits it.
        Raises pydantic.ValidationError on a malformed payload.
        """
        data = dict(payload)
        if data.get("expires_at") is None and data.get("expires_in") is not None:
            data["expires_at"] = int(now) + int(data["expires_in"])
        return cls.model_validate(data)


class UserProfile(BaseModel):
    """Application-owned profile row, keyed by the identity id."""

    id: UUID
    email: EmailStr
    name: str
    role: UserRole
    verification_status: VerificationStatus
    created_at: datetime
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class SignUpRequest(BaseModel):
    """Request payload for sign-up.

    email is a plain string here; the service owns email validation so the
    failure carries the invalid_email code.
    """

    email: str
    password: str
    name: str
    role: UserRole


class EmailRequest(BaseModel):
    """Request payload carrying only an email."""

    email: str


@dataclass
class SignUpResult:
    """Result of sign-up. The profile only exists after verification."""

    success: bool
    needs_verification: bool
    user: UserProfile | None = None

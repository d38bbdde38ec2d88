"""Authentication configuration."""

from pydantic import BaseModel, Field


class AuthConfig(BaseModel):
    """
    Authentication configuration.

    Token timing that guards correctness (validity buffer, refresh lead)
    is fixed on SessionManager and deliberately not configurable.
    """

    # Application
    app_base_url: str = Field(
        default="http://localhost:3000",
        description="Running origin; verification and reset links point here",
    )
    callback_path: str = Field(
        default="/auth/callback",
        description="Route the provider redirects to after email verification",
    )
    password_reset_path: str = Field(
        default="/auth/reset-password/confirm",
        description="Route the provider redirects to from a reset email",
    )

    # Sign-up
    min_password_length: int = Field(default=8, ge=6, le=72)
    signup_cooldown_seconds: int = Field(
        default=5,
        description="Minimum gap between sign-up attempts for one email",
        ge=1,
        le=300,
    )

    # Auto-refresh
    auto_refresh_max_retries: int = Field(default=3, ge=0, le=10)
    auto_refresh_base_delay_seconds: float = Field(
        default=1.0,
        description="Backoff base; attempt n waits base * 2**n",
        gt=0,
        le=60,
    )

    # Profile creation
    profile_create_retries: int = Field(default=3, ge=1, le=10)
    profile_retry_base_delay_seconds: float = Field(default=0.5, ge=0, le=10)

    # Session persistence
    session_storage_key: str = Field(default="agrolink-auth-token", min_length=1)
    session_storage_ttl_days: int = Field(default=30, ge=1, le=365)

    @property
    def callback_url(self) -> str:
        return f"{self.app_base_url.rstrip('/')}{self.callback_path}"

    @property
    def password_reset_url(self) -> str:
        return f"{self.app_base_url.rstrip('/')}{self.password_reset_path}"

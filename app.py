"""
Application composition root.

Loads secrets from Vault, builds the infrastructure clients once and
exposes create_app() for an ASGI server:

    uvicorn app:create_app --factory
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from api.errors import register_error_handlers
from auth.api import create_auth_router
from auth.config import AuthConfig
from auth.database import ProfileDatabase
from auth.events import AuthEventBus
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityLogger
from auth.service import AuthService
from auth.session import SessionManager
from auth.session_store import SessionStore
from clients.auth_provider_client import AuthProviderClient
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.vault_client import VaultClient, get_database_url, get_provider_config, get_valkey_url

logger = logging.getLogger(__name__)


@dataclass
class AuthComponents:
    """Long-lived collaborators shared by every AuthService instance."""

    config: AuthConfig
    provider: AuthProviderClient
    postgres: PostgresClient
    valkey: ValkeyClient

    def create_service(self, persist_session: bool = False) -> AuthService:
        """New AuthService owning a fresh SessionManager.

        persist_session keeps the session in Valkey across restarts. It is
        meant for single-user processes; HTTP requests carry the session in
        a cookie instead.
        """
        store = SessionStore(self.valkey, self.config) if persist_session else None
        session_manager = SessionManager(self.provider, self.config, store=store, events=AuthEventBus())
        return AuthService(
            config=self.config,
            provider=self.provider,
            session_manager=session_manager,
            profiles=ProfileDatabase(self.postgres),
            rate_limiter=RateLimiter(self.valkey, self.config),
            security_logger=SecurityLogger(self.postgres),
        )

    def close(self) -> None:
        self.provider.close()
        self.valkey.close()
        self.postgres.close()


def build_components(config: AuthConfig | None = None) -> AuthComponents:
    """Read secrets and connect the infrastructure clients.

    Raises:
        VaultError: Secrets unavailable. The application cannot start.
    """
    load_dotenv(Path(__file__).parent / ".env")
    vault = VaultClient()
    provider_config = get_provider_config(vault)

    return AuthComponents(
        config=config or AuthConfig(),
        provider=AuthProviderClient(provider_config["url"], provider_config["anon_key"]),
        postgres=PostgresClient(get_database_url(vault)),
        valkey=ValkeyClient(get_valkey_url(vault)),
    )


def create_app(components: AuthComponents | None = None) -> FastAPI:
    """FastAPI app with the auth routes and the global error handlers."""
    components = components or build_components()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        components.close()

    app = FastAPI(title="AgroLink Auth", lifespan=lifespan)
    register_error_handlers(app)
    app.include_router(create_auth_router(components.create_service, components.config))

    logger.info("Application initialized")
    return app

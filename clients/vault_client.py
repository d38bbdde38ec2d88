"""
HashiCorp Vault client for AgroLink secret management.

Uses AppRole authentication. Fails fast on missing configuration.
All paths scoped to the 'agrolink/' prefix.
"""

import logging
import os
from typing import Dict

import hvac
from hvac.exceptions import Forbidden, InvalidPath, Unauthorized

logger = logging.getLogger(__name__)

_SECRET_PREFIX = "agrolink"


class VaultError(Exception):
    """Vault operation failed. Fatal - the application cannot start without secrets."""


class VaultClient:
    """Vault client with AppRole auth, env-based config and a per-instance secret cache."""

    def __init__(
        self,
        vault_addr: str | None = None,
        vault_namespace: str | None = None,
    ):
        """Initialize from arguments or environment. Fails fast on missing config."""
        self.vault_addr = vault_addr or os.getenv("VAULT_ADDR")
        self.vault_namespace = vault_namespace or os.getenv("VAULT_NAMESPACE")
        role_id = os.getenv("VAULT_ROLE_ID")
        secret_id = os.getenv("VAULT_SECRET_ID")

        if not self.vault_addr:
            raise ValueError("VAULT_ADDR environment variable is required")
        if not role_id or not secret_id:
            raise ValueError(
                "VAULT_ROLE_ID and VAULT_SECRET_ID environment variables are required"
            )

        client_kwargs = {"url": self.vault_addr}
        if self.vault_namespace:
            client_kwargs["namespace"] = self.vault_namespace

        self.client = hvac.Client(**client_kwargs)
        try:
            auth_response = self.client.auth.approle.login(role_id=role_id, secret_id=secret_id)
        except hvac.exceptions.VaultError as e:
            logger.error(f"AppRole authentication failed: {e}")
            raise VaultError(f"AppRole authentication failed: {e}") from e
        self.client.token = auth_response["auth"]["client_token"]

        if not self.client.is_authenticated():
            raise VaultError("Vault authentication failed")

        self._cache: Dict[str, str] = {}
        logger.info(f"Vault client initialized: {self.vault_addr}")

    def get_secret(self, path: str, field: str) -> str:
        """
        Retrieve one field of a KV v2 secret under agrolink/.

        Raises:
            VaultError: Path missing or access denied.
            KeyError: Field not present in the secret.
        """
        full_path = f"{_SECRET_PREFIX}/{path}"
        cache_key = f"{full_path}/{field}"
        if cache_key in self._cache:
            return self._cache[cache_key]

        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=full_path, raise_on_deleted_version=True
            )
        except InvalidPath as e:
            logger.error(f"Secret path not found: {full_path}")
            raise VaultError(f"Secret path '{full_path}' not found in Vault") from e
        except (Unauthorized, Forbidden) as e:
            logger.error(f"Access denied to secret {full_path}: {e}")
            raise VaultError(f"Access denied to secret '{full_path}': {e}") from e

        secret_data = response["data"]["data"]
        if field not in secret_data:
            raise KeyError(
                f"Field '{field}' not found in secret '{full_path}'. "
                f"Available: {', '.join(secret_data)}"
            )

        self._cache[cache_key] = secret_data[field]
        return secret_data[field]

    def get_fields(self, path: str, fields: list[str]) -> Dict[str, str]:
        """Retrieve several fields of one secret."""
        return {field: self.get_secret(path, field) for field in fields}


def get_provider_config(vault: VaultClient) -> Dict[str, str]:
    """Auth provider credentials. Keys: url, anon_key."""
    return vault.get_fields("auth_provider", ["url", "anon_key"])


def get_database_url(vault: VaultClient) -> str:
    """PostgreSQL connection URL for the profile store."""
    return vault.get_secret("database", "url")


def get_valkey_url(vault: VaultClient) -> str:
    """Valkey connection URL for session persistence and cooldowns."""
    return vault.get_secret("valkey", "url")

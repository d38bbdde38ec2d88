# Infrastructure clients
from clients.auth_provider_client import AuthProviderClient, AuthProviderError
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.vault_client import (
    VaultClient,
    VaultError,
    get_provider_config,
    get_database_url,
    get_valkey_url,
)

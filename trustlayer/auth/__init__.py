from .registry import ApiKeyRegistry, Principal, api_principal, hash_secret
from .store import ApiKey, ApiKeyMetadata, ApiKeyStore, InMemoryApiKeyStore, SqlApiKeyStore

__all__ = [
    "ApiKeyRegistry",
    "Principal",
    "api_principal",
    "hash_secret",
    "ApiKey",
    "ApiKeyMetadata",
    "ApiKeyStore",
    "InMemoryApiKeyStore",
    "SqlApiKeyStore",
]

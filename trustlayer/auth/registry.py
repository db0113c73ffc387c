"""API key issuance, validation and revocation.

Secrets have the form ``ak_<64 hex chars>`` (256 bits from ``secrets``).
Only the SHA-256 hex digest is stored; the plaintext leaves ``issue`` once.
"""
import hashlib
import hmac
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Tuple

from ..observability import Observability
from .store import ApiKey, ApiKeyMetadata, ApiKeyStore

KEY_PREFIX = "ak_"

# Compared against when a hash is unknown, so "unknown" and "revoked" do the same work
_DUMMY_HASH = "0" * 64


def hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def generate_secret() -> str:
    return KEY_PREFIX + secrets.token_hex(32)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Principal:
    id: str
    role: str
    tenant_id: Optional[str] = None
    scopes: List[str] = field(default_factory=list)


def api_principal(key: ApiKey) -> Principal:
    return Principal(id=f"api-key-{key.id}", role="api", tenant_id=key.tenant_id, scopes=list(key.scopes))


class ApiKeyRegistry:
    def __init__(self, store: ApiKeyStore, observability: Observability,
                 clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self._obs = observability
        self._clock = clock or _utcnow

    def issue(self, tenant_id: str, scopes: Iterable[str], name: str) -> Tuple[str, ApiKey]:
        """Mint a key for ``tenant_id``; the returned secret is not retrievable again."""
        secret = generate_secret()
        key = ApiKey(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            key_hash=hash_secret(secret),
            scopes=list(scopes),
            name=name,
            created_at=self._clock(),
        )
        self.store.put(key)

        self._obs.record_metric("apikey.issued", 1, {"tenant_id": tenant_id})
        self._obs.mirror("increment_api_keys_issued")
        self._obs.log("info", "API key issued", {
            "key_id": key.id, "tenant_id": tenant_id, "scopes": key.scopes, "name": name,
        }, component="auth")
        return secret, key

    def validate(self, secret: str) -> Optional[ApiKey]:
        key_hash = hash_secret(secret)
        key = self.store.get_by_hash(key_hash)

        stored_hash = key.key_hash if key is not None else _DUMMY_HASH
        matched = hmac.compare_digest(stored_hash, key_hash)
        active = key is not None and key.revoked_at is None
        if matched & active:
            return key
        return None

    def revoke(self, key_id: str, tenant_id: str) -> bool:
        revoked = self.store.mark_revoked(key_id, tenant_id, self._clock())
        if revoked:
            self._obs.record_metric("apikey.revoked", 1, {"tenant_id": tenant_id})
            self._obs.mirror("increment_api_keys_revoked")
            self._obs.log("info", "API key revoked", {"key_id": key_id, "tenant_id": tenant_id}, component="auth")
        return revoked

    def list(self, tenant_id: str) -> List[ApiKeyMetadata]:
        return [k.metadata() for k in self.store.list_by_tenant(tenant_id) if k.active]

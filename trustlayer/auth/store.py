"""API key records and their storage backends.

The registry only talks to ``ApiKeyStore``; the in-memory store serves
single-process deployments and tests, the SQL store any SQLAlchemy URL.
"""
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..errors import StorageError
from ..models.apikey import ApiKeyRow


@dataclass(frozen=True)
class ApiKeyMetadata:
    id: str
    tenant_id: str
    scopes: List[str]
    name: str
    created_at: datetime
    revoked_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "scopes": list(self.scopes),
            "name": self.name,
            "created_at": self.created_at.isoformat(),
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
        }


@dataclass(frozen=True)
class ApiKey:
    id: str
    tenant_id: str
    key_hash: str = field(repr=False)
    scopes: List[str]
    name: str
    created_at: datetime
    revoked_at: Optional[datetime] = None

    @property
    def active(self) -> bool:
        return self.revoked_at is None

    def metadata(self) -> ApiKeyMetadata:
        return ApiKeyMetadata(
            id=self.id,
            tenant_id=self.tenant_id,
            scopes=list(self.scopes),
            name=self.name,
            created_at=self.created_at,
            revoked_at=self.revoked_at,
        )


class ApiKeyStore(ABC):
    @abstractmethod
    def get_by_hash(self, key_hash: str) -> Optional[ApiKey]:
        ...

    @abstractmethod
    def put(self, key: ApiKey) -> None:
        ...

    @abstractmethod
    def list_by_tenant(self, tenant_id: str) -> List[ApiKey]:
        ...

    @abstractmethod
    def mark_revoked(self, key_id: str, tenant_id: str, when: datetime) -> bool:
        """Set ``revoked_at`` on an active key owned by ``tenant_id``."""


class InMemoryApiKeyStore(ApiKeyStore):
    def __init__(self):
        self._by_hash: Dict[str, ApiKey] = {}
        self._hash_by_id: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get_by_hash(self, key_hash: str) -> Optional[ApiKey]:
        with self._lock:
            return self._by_hash.get(key_hash)

    def put(self, key: ApiKey) -> None:
        with self._lock:
            self._by_hash[key.key_hash] = key
            self._hash_by_id[key.id] = key.key_hash

    def list_by_tenant(self, tenant_id: str) -> List[ApiKey]:
        with self._lock:
            return [k for k in self._by_hash.values() if k.tenant_id == tenant_id]

    def mark_revoked(self, key_id: str, tenant_id: str, when: datetime) -> bool:
        with self._lock:
            key_hash = self._hash_by_id.get(key_id)
            key = self._by_hash.get(key_hash) if key_hash else None
            if key is None or key.tenant_id != tenant_id or key.revoked_at is not None:
                return False
            self._by_hash[key_hash] = replace(key, revoked_at=when)
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_hash)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone=True columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _from_row(row: ApiKeyRow) -> ApiKey:
    return ApiKey(
        id=row.key_id,
        tenant_id=row.tenant_id,
        key_hash=row.hash,
        scopes=list(row.scopes or []),
        name=row.name or "",
        created_at=_aware(row.created_at),
        revoked_at=_aware(row.revoked_at),
    )


class SqlApiKeyStore(ApiKeyStore):
    def __init__(self, session_factory: sessionmaker):
        self._sessions = session_factory

    def get_by_hash(self, key_hash: str) -> Optional[ApiKey]:
        try:
            with self._sessions() as db:
                row = db.execute(select(ApiKeyRow).where(ApiKeyRow.hash == key_hash)).scalar_one_or_none()
                return _from_row(row) if row else None
        except SQLAlchemyError as e:
            raise StorageError(f"api key lookup failed: {e.__class__.__name__}") from e

    def put(self, key: ApiKey) -> None:
        try:
            with self._sessions() as db:
                db.add(ApiKeyRow(
                    key_id=key.id,
                    tenant_id=key.tenant_id,
                    hash=key.key_hash,
                    scopes=list(key.scopes),
                    name=key.name,
                    created_at=key.created_at,
                    revoked_at=key.revoked_at,
                ))
                db.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"api key insert failed: {e.__class__.__name__}") from e

    def list_by_tenant(self, tenant_id: str) -> List[ApiKey]:
        try:
            with self._sessions() as db:
                rows = db.execute(
                    select(ApiKeyRow).where(ApiKeyRow.tenant_id == tenant_id).order_by(ApiKeyRow.created_at)
                ).scalars().all()
                return [_from_row(r) for r in rows]
        except SQLAlchemyError as e:
            raise StorageError(f"api key listing failed: {e.__class__.__name__}") from e

    def mark_revoked(self, key_id: str, tenant_id: str, when: datetime) -> bool:
        try:
            with self._sessions() as db:
                result = db.execute(
                    update(ApiKeyRow)
                    .where(
                        ApiKeyRow.key_id == key_id,
                        ApiKeyRow.tenant_id == tenant_id,
                        ApiKeyRow.revoked_at.is_(None),
                    )
                    .values(revoked_at=when)
                )
                db.commit()
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise StorageError(f"api key revoke failed: {e.__class__.__name__}") from e

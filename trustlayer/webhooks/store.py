"""Per-tenant webhook subscription storage."""
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..errors import StorageError
from ..models.webhook import WebhookSubscriptionRow


@dataclass(frozen=True)
class WebhookSubscription:
    id: str
    tenant_id: str
    url: str
    secret: str = field(repr=False)
    events: FrozenSet[str] = frozenset()
    active: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def wants(self, event_name: str) -> bool:
        return self.active and event_name in self.events

    def to_dict(self) -> dict:
        # The secret is write-only
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "url": self.url,
            "events": sorted(self.events),
            "active": self.active,
            "created_at": self.created_at.isoformat(),
        }


class SubscriptionStore(ABC):
    @abstractmethod
    def add(self, subscription: WebhookSubscription) -> None:
        ...

    @abstractmethod
    def list_for_tenant(self, tenant_id: str) -> List[WebhookSubscription]:
        """Snapshot of the tenant's subscriptions in registration order."""

    @abstractmethod
    def deactivate(self, tenant_id: str, subscription_id: str) -> bool:
        ...


class InMemorySubscriptionStore(SubscriptionStore):
    def __init__(self):
        # Tuples are swapped whole, so a reader never sees a half-applied change
        self._by_tenant: Dict[str, Tuple[WebhookSubscription, ...]] = {}
        self._lock = threading.Lock()

    def add(self, subscription: WebhookSubscription) -> None:
        with self._lock:
            current = self._by_tenant.get(subscription.tenant_id, ())
            self._by_tenant[subscription.tenant_id] = current + (subscription,)

    def list_for_tenant(self, tenant_id: str) -> List[WebhookSubscription]:
        return list(self._by_tenant.get(tenant_id, ()))

    def deactivate(self, tenant_id: str, subscription_id: str) -> bool:
        with self._lock:
            current = self._by_tenant.get(tenant_id, ())
            changed = False
            updated = []
            for sub in current:
                if sub.id == subscription_id and sub.active:
                    sub = replace(sub, active=False)
                    changed = True
                updated.append(sub)
            if changed:
                self._by_tenant[tenant_id] = tuple(updated)
            return changed


def _from_row(row: WebhookSubscriptionRow) -> WebhookSubscription:
    created = row.created_at
    if created is not None and created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return WebhookSubscription(
        id=row.subscription_id,
        tenant_id=row.tenant_id,
        url=row.url,
        secret=row.secret,
        events=frozenset(row.events or []),
        active=bool(row.active),
        created_at=created,
    )


class SqlSubscriptionStore(SubscriptionStore):
    def __init__(self, session_factory: sessionmaker):
        self._sessions = session_factory

    def add(self, subscription: WebhookSubscription) -> None:
        try:
            with self._sessions() as db:
                db.add(WebhookSubscriptionRow(
                    subscription_id=subscription.id,
                    tenant_id=subscription.tenant_id,
                    url=subscription.url,
                    secret=subscription.secret,
                    events=sorted(subscription.events),
                    active=subscription.active,
                    created_at=subscription.created_at,
                ))
                db.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"webhook insert failed: {e.__class__.__name__}") from e

    def list_for_tenant(self, tenant_id: str) -> List[WebhookSubscription]:
        try:
            with self._sessions() as db:
                rows = db.execute(
                    select(WebhookSubscriptionRow)
                    .where(WebhookSubscriptionRow.tenant_id == tenant_id)
                    .order_by(WebhookSubscriptionRow.seq)
                ).scalars().all()
                return [_from_row(r) for r in rows]
        except SQLAlchemyError as e:
            raise StorageError(f"webhook listing failed: {e.__class__.__name__}") from e

    def deactivate(self, tenant_id: str, subscription_id: str) -> bool:
        try:
            with self._sessions() as db:
                result = db.execute(
                    update(WebhookSubscriptionRow)
                    .where(
                        WebhookSubscriptionRow.subscription_id == subscription_id,
                        WebhookSubscriptionRow.tenant_id == tenant_id,
                        WebhookSubscriptionRow.active.is_(True),
                    )
                    .values(active=False)
                )
                db.commit()
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise StorageError(f"webhook deactivate failed: {e.__class__.__name__}") from e

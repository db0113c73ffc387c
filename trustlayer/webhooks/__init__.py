from .dispatcher import DeliveryResult, WebhookDispatcher
from .events import WEBHOOK_EVENTS, WebhookEvent
from .signing import sign_payload, verify_signature
from .store import (
    InMemorySubscriptionStore,
    SqlSubscriptionStore,
    SubscriptionStore,
    WebhookSubscription,
)

__all__ = [
    "DeliveryResult",
    "WebhookDispatcher",
    "WEBHOOK_EVENTS",
    "WebhookEvent",
    "sign_payload",
    "verify_signature",
    "InMemorySubscriptionStore",
    "SqlSubscriptionStore",
    "SubscriptionStore",
    "WebhookSubscription",
]

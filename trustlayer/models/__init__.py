from .apikey import ApiKeyRow
from .webhook import WebhookSubscriptionRow

__all__ = ["ApiKeyRow", "WebhookSubscriptionRow"]

"""API-key authentication, per-key rate limiting, signed webhooks and request tracing."""

__version__ = "0.1.0"

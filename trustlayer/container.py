"""
Long-lived service objects, built once at process start.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Union

import httpx

from .auth.registry import ApiKeyRegistry
from .auth.store import ApiKeyStore, InMemoryApiKeyStore, SqlApiKeyStore
from .config import Settings
from .db import init_db, make_engine, make_session_factory
from .observability import Observability
from .services.ratelimit import FixedWindowRateLimiter, RedisRateLimiter, build_rate_limiter
from .webhooks.dispatcher import WebhookDispatcher
from .webhooks.store import InMemorySubscriptionStore, SqlSubscriptionStore, SubscriptionStore

logger = logging.getLogger("trustlayer")

RateLimiter = Union[FixedWindowRateLimiter, RedisRateLimiter]


@dataclass
class TrustServices:
    settings: Settings
    observability: Observability
    registry: ApiKeyRegistry
    limiter: RateLimiter
    dispatcher: WebhookDispatcher


def build_stores(settings: Settings):
    if settings.storage_backend == "sql":
        engine = make_engine(settings.database_url)
        init_db(engine)
        sessions = make_session_factory(engine)
        return SqlApiKeyStore(sessions), SqlSubscriptionStore(sessions)
    if settings.storage_backend != "memory":
        raise ValueError(f"unknown STORAGE_BACKEND: {settings.storage_backend!r}")
    return InMemoryApiKeyStore(), InMemorySubscriptionStore()


def build_services(
    settings: Optional[Settings] = None,
    *,
    observability: Optional[Observability] = None,
    key_store: Optional[ApiKeyStore] = None,
    subscription_store: Optional[SubscriptionStore] = None,
    limiter: Optional[RateLimiter] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> TrustServices:
    settings = settings or Settings.from_env()
    observability = observability or Observability()

    if key_store is None or subscription_store is None:
        default_keys, default_subs = build_stores(settings)
        if key_store is None:
            key_store = default_keys
        if subscription_store is None:
            subscription_store = default_subs

    if limiter is None:
        limiter = build_rate_limiter(settings.rate_limit_backend, settings.redis_url)

    dispatcher = WebhookDispatcher(
        subscription_store,
        observability,
        client=http_client,
        timeout=settings.webhook_timeout_sec,
        max_retries=settings.webhook_max_retries,
        retry_backoff=settings.webhook_retry_backoff_sec,
    )

    logger.info("services built", extra={
        "component": "container",
        "storage_backend": settings.storage_backend,
        "rate_limit_backend": settings.rate_limit_backend,
    })
    return TrustServices(
        settings=settings,
        observability=observability,
        registry=ApiKeyRegistry(key_store, observability),
        limiter=limiter,
        dispatcher=dispatcher,
    )

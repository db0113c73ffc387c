"""
Settings from environment and service wiring
"""
import pytest

from trustlayer.auth.store import InMemoryApiKeyStore, SqlApiKeyStore
from trustlayer.config import Settings
from trustlayer.container import build_services
from trustlayer.services.ratelimit import FixedWindowRateLimiter


def test_defaults(monkeypatch):
    for var in ("STORAGE_BACKEND", "API_KEY_RATE_LIMIT", "API_KEY_RATE_WINDOW_SEC", "ADMIN_TOKEN"):
        monkeypatch.delenv(var, raising=False)

    settings = Settings.from_env()

    assert settings.storage_backend == "memory"
    assert settings.rate_limit == 100
    assert settings.rate_window_sec == 60
    assert settings.webhook_max_retries == 0
    assert settings.admin_token is None


def test_from_env(monkeypatch):
    monkeypatch.setenv("STORAGE_BACKEND", "SQL")
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setenv("API_KEY_RATE_LIMIT", "10")
    monkeypatch.setenv("API_KEY_RATE_WINDOW_SEC", "5")
    monkeypatch.setenv("WEBHOOK_TIMEOUT_SEC", "2.5")
    monkeypatch.setenv("WEBHOOK_MAX_RETRIES", "3")
    monkeypatch.setenv("ADMIN_TOKEN", "op")
    monkeypatch.setenv("CONFIGURE_LOGGING", "false")

    settings = Settings.from_env()

    assert settings.storage_backend == "sql"
    assert settings.database_url == "sqlite://"
    assert settings.rate_limit == 10
    assert settings.rate_window_sec == 5
    assert settings.webhook_timeout_sec == 2.5
    assert settings.webhook_max_retries == 3
    assert settings.admin_token == "op"
    assert settings.configure_logging is False


def test_build_memory_services():
    services = build_services(Settings(configure_logging=False))

    assert isinstance(services.registry.store, InMemoryApiKeyStore)
    assert isinstance(services.limiter, FixedWindowRateLimiter)
    assert services.dispatcher.max_retries == 0


def test_build_sql_services():
    services = build_services(Settings(storage_backend="sql", database_url="sqlite://", configure_logging=False))

    assert isinstance(services.registry.store, SqlApiKeyStore)
    secret, _ = services.registry.issue("acme", [], "ci")
    assert services.registry.validate(secret) is not None


def test_injected_components_are_used(observability):
    store = InMemoryApiKeyStore()
    limiter = FixedWindowRateLimiter()

    services = build_services(Settings(configure_logging=False), observability=observability,
                              key_store=store, limiter=limiter)

    assert services.registry.store is store
    assert services.limiter is limiter
    assert services.observability is observability


def test_unknown_storage_backend():
    with pytest.raises(ValueError):
        build_services(Settings(storage_backend="mongo", configure_logging=False))

"""
Configuration module for the trust layer
"""
import os
from dataclasses import dataclass
from typing import Optional


def env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable"""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")


def env_int(key: str, default: int) -> int:
    return int(os.getenv(key, str(default)))


def env_float(key: str, default: float) -> float:
    return float(os.getenv(key, str(default)))


API_PREFIX = "/v1"
SERVICE_NAME = "trust-layer"


@dataclass
class Settings:
    # Storage
    storage_backend: str = "memory"
    database_url: str = "sqlite:///./trustlayer.db"

    # Rate limiting
    rate_limit_backend: str = "memory"
    redis_url: Optional[str] = None
    rate_limit: int = 100
    rate_window_sec: int = 60
    rate_limit_sweep_sec: int = 30

    # Webhooks
    webhook_timeout_sec: float = 10.0
    webhook_max_retries: int = 0
    webhook_retry_backoff_sec: float = 0.5

    # Operator access to the management API
    admin_token: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"
    configure_logging: bool = True

    app_port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            storage_backend=os.getenv("STORAGE_BACKEND", "memory").lower(),
            database_url=os.getenv("DATABASE_URL", "sqlite:///./trustlayer.db"),
            rate_limit_backend=os.getenv("RATE_LIMIT_BACKEND", "memory").lower(),
            redis_url=os.getenv("REDIS_URL") or None,
            rate_limit=env_int("API_KEY_RATE_LIMIT", 100),
            rate_window_sec=env_int("API_KEY_RATE_WINDOW_SEC", 60),
            rate_limit_sweep_sec=env_int("RATE_LIMIT_SWEEP_SEC", 30),
            webhook_timeout_sec=env_float("WEBHOOK_TIMEOUT_SEC", 10.0),
            webhook_max_retries=env_int("WEBHOOK_MAX_RETRIES", 0),
            webhook_retry_backoff_sec=env_float("WEBHOOK_RETRY_BACKOFF_SEC", 0.5),
            admin_token=os.getenv("ADMIN_TOKEN") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
            configure_logging=env_bool("CONFIGURE_LOGGING", True),
            app_port=env_int("APP_PORT", 8000),
        )

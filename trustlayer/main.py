import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import FastAPI

from .api.health import router as health_router
from .api.keys import router as keys_router
from .api.logs import router as logs_router
from .api.metrics import router as metrics_router
from .api.webhooks import router as webhooks_router
from .config import API_PREFIX, Settings
from .container import TrustServices, build_services
from .errors import TrustLayerError, trust_layer_error_handler
from .logging_config import setup_logging
from .middleware import install_middleware

logger = logging.getLogger("trustlayer")


async def _sweep_rate_windows(services: TrustServices) -> None:
    interval = max(services.settings.rate_limit_sweep_sec, 1)
    while True:
        await asyncio.sleep(interval)
        try:
            dropped = services.limiter.evict_expired()
            if dropped:
                services.observability.record_metric("ratelimit.windows.evicted", dropped)
        except Exception:
            logger.exception("rate limit sweep failed")


def create_app(services: Optional[TrustServices] = None, settings: Optional[Settings] = None) -> FastAPI:
    if services is None:
        settings = settings or Settings.from_env()
        if settings.configure_logging:
            setup_logging(settings.log_level, settings.log_format)
        services = build_services(settings)

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        obs = services.observability
        obs.log("info", "Trust layer starting up", {
            "storage_backend": services.settings.storage_backend,
            "rate_limit": services.settings.rate_limit,
            "rate_window_sec": services.settings.rate_window_sec,
        }, component="api")
        sweeper = asyncio.create_task(_sweep_rate_windows(services))
        try:
            yield
        finally:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper
            await services.dispatcher.aclose()
            obs.log("info", "Trust layer shutting down", component="api")

    app = FastAPI(title="Trust & Integration Layer", lifespan=lifespan)
    app.state.services = services

    app.add_exception_handler(TrustLayerError, trust_layer_error_handler)
    install_middleware(app, services)

    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(keys_router, prefix=API_PREFIX)
    app.include_router(webhooks_router, prefix=API_PREFIX)
    app.include_router(metrics_router, prefix=API_PREFIX)
    app.include_router(logs_router, prefix=API_PREFIX)
    return app

"""
Request pipeline: tracing (outermost) -> API key authentication -> rate limit.

Register with ``install_middleware`` so the order is fixed; Starlette runs
the last-added middleware first.
"""
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .auth.registry import ApiKeyRegistry, api_principal
from .errors import RateLimitExceeded, StorageError, Unauthorized, problem_response
from .logging_config import new_trace_id, trace_id_var
from .observability import SPAN_ERROR, SPAN_SUCCESS, Observability

API_KEY_SCHEME = "apikey"


def extract_api_key(authorization: Optional[str]) -> Optional[str]:
    """Secret from ``Authorization: ApiKey <secret>``; None when another scheme (or none) is used."""
    if not authorization:
        return None
    parts = authorization.strip().split(None, 1)
    if not parts or parts[0].lower() != API_KEY_SCHEME:
        return None
    return parts[1].strip() if len(parts) == 2 else ""


class TracingMiddleware(BaseHTTPMiddleware):
    """Wraps each request in an ``http.request`` span. Observes only."""

    def __init__(self, app: ASGIApp, observability: Observability):
        super().__init__(app)
        self.obs = observability

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = request.headers.get("X-Request-ID") or new_trace_id()
        token = trace_id_var.set(trace_id)
        method = request.method
        path = request.url.path
        span = self.obs.start_span("http.request", {"method": method, "path": path})
        self.obs.log("info", "HTTP Request", {
            "method": method,
            "path": path,
            "client_ip": request.client.host if request.client else "unknown",
        }, component="api")

        try:
            try:
                response = await call_next(request)
            except Exception as e:
                span.attributes["status"] = 500
                self.obs.finish_span(span, SPAN_ERROR, e)
                self.obs.record_metric("error.count", 1, {"type": type(e).__name__})
                self.obs.mirror("increment_errors", type(e).__name__)
                self.obs.log("error", "Unhandled Error", {
                    "error": str(e),
                    "type": type(e).__name__,
                    "method": method,
                    "path": path,
                }, component="api")
                raise

            status = response.status_code
            span.attributes["status"] = status
            self.obs.finish_span(span, SPAN_ERROR if status >= 500 else SPAN_SUCCESS)
            span.attributes["duration_ms"] = round(span.duration_ms, 3)

            tags = {"method": method, "status": str(status)}
            self.obs.record_metric("http.request.duration", span.duration_ms, tags)
            self.obs.record_metric("http.request.count", 1, tags)
            self.obs.mirror("increment_requests", method, status)
            self.obs.log("warning" if status >= 400 else "info", "HTTP Response", {
                "method": method,
                "path": path,
                "status": status,
                "duration_ms": span.attributes["duration_ms"],
                "client_ip": request.client.host if request.client else "unknown",
            }, component="api")

            response.headers["X-Request-ID"] = trace_id
            return response
        finally:
            trace_id_var.reset(token)


class ApiKeyAuthMiddleware(BaseHTTPMiddleware):
    """Resolve ``ApiKey`` credentials into the request context.

    Requests without an ApiKey credential pass through untouched so other
    mechanisms can authenticate them. A presented but invalid or revoked key
    is rejected here with 401, whatever else the request carries.
    """

    def __init__(self, app: ASGIApp, registry: ApiKeyRegistry, observability: Observability):
        super().__init__(app)
        self.registry = registry
        self.obs = observability

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        secret = extract_api_key(request.headers.get("Authorization"))
        if secret is None:
            return await call_next(request)

        try:
            key = await run_in_threadpool(self.registry.validate, secret) if secret else None
        except StorageError as e:
            self.obs.log("error", "API key lookup unavailable", {"error": str(e)}, component="auth")
            return problem_response(e)

        if key is None:
            self.obs.record_metric("auth.rejected", 1, {"reason": "invalid_api_key"})
            self.obs.mirror("increment_auth_rejected")
            self.obs.log("warning", "API key rejected", {
                "method": request.method, "path": request.url.path,
            }, component="auth")
            return problem_response(Unauthorized())

        request.state.api_key = key
        request.state.tenant_id = key.tenant_id
        request.state.scopes = list(key.scopes)
        request.state.principal = api_principal(key)
        return await call_next(request)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed-window throttle for API-key authenticated requests."""

    def __init__(self, app: ASGIApp, limiter, observability: Observability,
                 limit: int = 100, window_seconds: float = 60):
        super().__init__(app)
        self.limiter = limiter
        self.obs = observability
        self.limit = limit
        self.window_seconds = window_seconds

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        key = getattr(request.state, "api_key", None)
        if key is None:
            return await call_next(request)

        decision = await run_in_threadpool(self.limiter.hit, key.id, self.limit, self.window_seconds)
        if not decision.allowed:
            self.obs.record_metric("ratelimit.exceeded", 1, {"tenant_id": key.tenant_id})
            self.obs.mirror("increment_rate_limited")
            self.obs.log("warning", "API key rate limit exceeded", {
                "key_id": key.id,
                "tenant_id": key.tenant_id,
                "retry_after": decision.retry_after,
            }, component="ratelimit")
            return problem_response(RateLimitExceeded(decision.retry_after, self.limit, self.window_seconds))

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response


def install_middleware(app: FastAPI, services) -> None:
    obs = services.observability
    settings = services.settings
    app.add_middleware(
        RateLimitMiddleware,
        limiter=services.limiter,
        observability=obs,
        limit=settings.rate_limit,
        window_seconds=settings.rate_window_sec,
    )
    app.add_middleware(ApiKeyAuthMiddleware, registry=services.registry, observability=obs)
    app.add_middleware(TracingMiddleware, observability=obs)

"""
Prometheus metrics for the trust layer
"""

import os

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

# Build info
BUILD_INFO = Gauge(
    'trustlayer_build_info',
    'Build information',
    ['version']
)

# Request counters
REQUESTS_TOTAL = Counter(
    'trustlayer_requests_total',
    'Total number of HTTP requests',
    ['method', 'status_class']
)

# Span latency
SPAN_DURATION_MS = Histogram(
    'trustlayer_span_duration_ms',
    'Span duration in milliseconds',
    ['operation', 'status'],
    buckets=[1, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000]
)

ERRORS_TOTAL = Counter(
    'trustlayer_errors_total',
    'Unhandled errors by exception type',
    ['type']
)

# API keys
API_KEYS_ISSUED_TOTAL = Counter(
    'trustlayer_api_keys_issued_total',
    'Total number of API keys issued'
)

API_KEYS_REVOKED_TOTAL = Counter(
    'trustlayer_api_keys_revoked_total',
    'Total number of API keys revoked'
)

AUTH_REJECTED_TOTAL = Counter(
    'trustlayer_auth_rejected_total',
    'Requests rejected by API key authentication'
)

RATE_LIMITED_TOTAL = Counter(
    'trustlayer_rate_limited_total',
    'Requests denied by the per-key rate limiter'
)

# Webhooks
WEBHOOK_DELIVERIES_TOTAL = Counter(
    'trustlayer_webhook_deliveries_total',
    'Webhook delivery outcomes',
    ['outcome']
)


def _status_class(status_code: int) -> str:
    if 200 <= status_code < 300:
        return "2xx"
    if 300 <= status_code < 400:
        return "3xx"
    if 400 <= status_code < 500:
        return "4xx"
    if 500 <= status_code < 600:
        return "5xx"
    return "other"


class PrometheusMetrics:
    """Service for managing Prometheus metrics."""

    def __init__(self):
        self._setup_build_info()

    def _setup_build_info(self):
        version = os.getenv("APP_VERSION", "0.1.0")
        BUILD_INFO.labels(version=version).set(1)

    def increment_requests(self, method: str, status_code: int):
        REQUESTS_TOTAL.labels(method=method, status_class=_status_class(status_code)).inc()

    def observe_span(self, operation: str, status: str, duration_ms: float):
        SPAN_DURATION_MS.labels(operation=operation, status=status).observe(duration_ms)

    def increment_errors(self, error_type: str):
        ERRORS_TOTAL.labels(type=error_type).inc()

    def increment_api_keys_issued(self):
        API_KEYS_ISSUED_TOTAL.inc()

    def increment_api_keys_revoked(self):
        API_KEYS_REVOKED_TOTAL.inc()

    def increment_auth_rejected(self):
        AUTH_REJECTED_TOTAL.inc()

    def increment_rate_limited(self):
        RATE_LIMITED_TOTAL.inc()

    def increment_webhook_delivery(self, outcome: str):
        WEBHOOK_DELIVERIES_TOTAL.labels(outcome=outcome).inc()

    def get_metrics(self) -> bytes:
        """Get metrics in Prometheus format."""
        return generate_latest()

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST

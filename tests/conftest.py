# tests/conftest.py
import httpx
import pytest
from fastapi.testclient import TestClient

from trustlayer.config import Settings
from trustlayer.container import build_services
from trustlayer.main import create_app
from trustlayer.observability import Observability

ADMIN_TOKEN = "test-operator-token"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class Recorder:
    """httpx MockTransport handler that records requests and answers 200."""

    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json={"ok": True})


class BrokenPrometheus:
    """Prometheus facade whose every call fails."""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise RuntimeError("prometheus registry down")
        return fail


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def observability():
    return Observability()


@pytest.fixture
def broken_observability():
    return Observability(prometheus=BrokenPrometheus())


@pytest.fixture
def settings():
    return Settings(admin_token=ADMIN_TOKEN, rate_limit=5, rate_window_sec=60, configure_logging=False)


@pytest.fixture
def webhook_receiver():
    return Recorder()


@pytest.fixture
def services(settings, webhook_receiver):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(webhook_receiver))
    return build_services(settings, http_client=http_client)


@pytest.fixture
def app(services):
    return create_app(services)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def issue_key(services):
    """Issue a key directly through the registry and return (secret, key, headers)."""

    def _issue(tenant_id: str = "acme", scopes=("keys:manage",), name: str = "test"):
        secret, key = services.registry.issue(tenant_id, list(scopes), name)
        return secret, key, {"Authorization": f"ApiKey {secret}"}

    return _issue

"""
Management API: keys, webhooks, events, metrics
"""
import logging

from fastapi.testclient import TestClient

from trustlayer.logging_config import memory_handler
from trustlayer.webhooks.signing import verify_signature


def test_health_endpoint(client):
    response = client.get("/v1/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


# ----- API keys -----

def test_create_key_as_operator(client, admin_headers):
    response = client.post("/v1/tenants/acme/api-keys", headers=admin_headers,
                           json={"name": "ci", "scopes": ["events:emit"]})

    assert response.status_code == 201
    assert response.headers["Cache-Control"] == "no-store"
    data = response.json()
    assert data["api_key"].startswith("ak_")
    assert len(data["api_key"]) == 67
    assert data["key"]["tenant_id"] == "acme"
    assert data["key"]["scopes"] == ["events:emit"]
    assert data["key"]["revoked_at"] is None
    assert "hash" not in data["key"]


def test_issued_key_authenticates(client, admin_headers):
    created = client.post("/v1/tenants/acme/api-keys", headers=admin_headers,
                          json={"name": "ci", "scopes": ["keys:manage"]}).json()

    response = client.get("/v1/tenants/acme/api-keys", headers={"Authorization": f"ApiKey {created['api_key']}"})

    assert response.status_code == 200
    assert response.json()["total"] == 1


def test_list_never_exposes_secret_or_hash(client, admin_headers):
    secret = client.post("/v1/tenants/acme/api-keys", headers=admin_headers,
                         json={"name": "ci"}).json()["api_key"]

    body = client.get("/v1/tenants/acme/api-keys", headers=admin_headers).text

    assert secret not in body
    assert "hash" not in body


def test_revoke_key(client, admin_headers):
    created = client.post("/v1/tenants/acme/api-keys", headers=admin_headers, json={"name": "ci"}).json()
    key_id = created["key"]["id"]

    first = client.delete(f"/v1/tenants/acme/api-keys/{key_id}", headers=admin_headers)
    second = client.delete(f"/v1/tenants/acme/api-keys/{key_id}", headers=admin_headers)

    assert first.json() == {"revoked": True, "key_id": key_id}
    assert second.json() == {"revoked": False, "key_id": key_id}
    assert client.get("/v1/tenants/acme/api-keys", headers=admin_headers).json()["total"] == 0
    assert client.get("/v1/health", headers={"Authorization": f"ApiKey {created['api_key']}"}).status_code == 401


def test_key_cannot_manage_other_tenant(client, issue_key):
    _, _, headers = issue_key("acme", ["keys:manage"])

    response = client.get("/v1/tenants/globex/api-keys", headers=headers)

    assert response.status_code == 403
    assert response.json()["type"] == "/api/errors/forbidden"


def test_key_needs_scope(client, issue_key):
    _, _, headers = issue_key("acme", ["events:emit"])
    assert client.get("/v1/tenants/acme/api-keys", headers=headers).status_code == 403


def test_wildcard_scope(client, issue_key):
    _, _, headers = issue_key("acme", ["*"])
    assert client.get("/v1/tenants/acme/api-keys", headers=headers).status_code == 200


def test_missing_credentials(client):
    response = client.get("/v1/tenants/acme/api-keys")

    assert response.status_code == 401
    assert response.headers["content-type"].startswith("application/problem+json")
    assert response.json()["title"] == "Unauthorized"


def test_wrong_operator_token(client):
    response = client.get("/v1/tenants/acme/api-keys", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


def test_create_key_validation(client, admin_headers):
    response = client.post("/v1/tenants/acme/api-keys", headers=admin_headers, json={"name": ""})
    assert response.status_code == 422


# ----- Webhooks -----

def _register(client, headers, tenant="acme", **overrides):
    body = {
        "url": "https://hooks.example.com/trust",
        "secret": "whsec-0123456789",
        "events": ["task.created"],
    }
    body.update(overrides)
    return client.post(f"/v1/tenants/{tenant}/webhooks", headers=headers, json=body)


def test_register_and_list_webhooks(client, admin_headers):
    created = _register(client, admin_headers)

    assert created.status_code == 201
    sub = created.json()
    assert sub["url"] == "https://hooks.example.com/trust"
    assert sub["events"] == ["task.created"]
    assert sub["active"] is True
    assert "secret" not in sub

    listing = client.get("/v1/tenants/acme/webhooks", headers=admin_headers).json()
    assert listing["total"] == 1
    assert listing["webhooks"][0]["id"] == sub["id"]
    assert "whsec-0123456789" not in str(listing)


def test_register_webhook_rejects_bad_url(client, admin_headers):
    assert _register(client, admin_headers, url="ftp://hooks.example.com").status_code == 422
    assert _register(client, admin_headers, events=[]).status_code == 422
    assert _register(client, admin_headers, secret="short").status_code == 422


def test_deactivate_webhook(client, admin_headers):
    sub_id = _register(client, admin_headers).json()["id"]

    response = client.post(f"/v1/tenants/acme/webhooks/{sub_id}/deactivate", headers=admin_headers)

    assert response.json() == {"deactivated": True, "id": sub_id}
    listing = client.get("/v1/tenants/acme/webhooks", headers=admin_headers).json()
    assert listing["webhooks"][0]["active"] is False


def test_webhook_scope_required(client, issue_key):
    _, _, headers = issue_key("acme", ["keys:manage"])
    assert _register(client, headers).status_code == 403


def test_emit_event_delivers_signed_webhook(app, admin_headers, issue_key, webhook_receiver):
    _, _, emit_headers = issue_key("acme", ["events:emit"])

    with TestClient(app) as c:
        assert _register(c, admin_headers).status_code == 201
        response = c.post("/v1/tenants/acme/events", headers=emit_headers,
                          json={"event": "task.created", "data": {"task_id": "t-1"}})
        assert response.status_code == 202
        assert response.json()["accepted"] is True
        assert response.json()["event"] == "task.created"
    # Shutdown drains in-flight deliveries

    (request,) = webhook_receiver.requests
    assert str(request.url) == "https://hooks.example.com/trust"
    assert request.headers["X-Webhook-Event"] == "task.created"
    assert verify_signature(request.content, request.headers["X-Webhook-Signature"], "whsec-0123456789")


def test_emit_event_requires_scope(client, issue_key):
    _, _, headers = issue_key("acme", ["keys:manage"])
    response = client.post("/v1/tenants/acme/events", headers=headers, json={"event": "task.created"})
    assert response.status_code == 403


# ----- Logs -----

def test_logs_tail_returns_buffered_records(client, admin_headers):
    memory_handler.handle(logging.makeLogRecord({
        "name": "trustlayer", "msg": "ring-buffer-marker", "levelno": logging.INFO, "levelname": "INFO",
    }))

    response = client.get("/v1/logs", headers=admin_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == len(data["logs"])
    assert any("ring-buffer-marker" in entry["msg"] for entry in data["logs"])


def test_logs_limit_is_bounded(client, admin_headers):
    assert client.get("/v1/logs?limit=0", headers=admin_headers).status_code == 422
    response = client.get("/v1/logs?limit=1", headers=admin_headers)
    assert response.json()["total"] <= 1


def test_logs_require_admin(client, issue_key):
    _, _, headers = issue_key("acme", ["keys:manage"])

    assert client.get("/v1/logs", headers=headers).status_code == 403
    assert client.get("/v1/logs").status_code == 401


# ----- Metrics -----

def test_metrics_snapshot_requires_admin(client, admin_headers, issue_key):
    _, _, headers = issue_key("acme", ["keys:manage"])

    assert client.get("/v1/metrics", headers=headers).status_code == 403

    response = client.get("/v1/metrics", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()
    assert "metrics" in data
    assert isinstance(data["spans"], list)


def test_prometheus_endpoint(client):
    client.get("/v1/health")

    response = client.get("/v1/metrics/prometheus")

    assert response.status_code == 200
    assert "trustlayer_requests_total" in response.text
    assert "trustlayer_span_duration_ms" in response.text

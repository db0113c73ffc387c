"""
Webhook subscription and event endpoints
"""
from fastapi import APIRouter, Depends, status
from starlette.concurrency import run_in_threadpool

from ..auth.deps import get_services, require_tenant_scope
from ..schemas.webhook import EventIn, WebhookCreate, WebhookList, WebhookOut
from ..webhooks.events import WebhookEvent
from ..webhooks.store import WebhookSubscription

router = APIRouter(prefix="/tenants/{tenant_id}", tags=["Webhooks"])

require_webhooks_scope = require_tenant_scope("webhooks:manage")
require_events_scope = require_tenant_scope("events:emit")


def _out(sub: WebhookSubscription) -> WebhookOut:
    return WebhookOut(**sub.to_dict())


@router.post("/webhooks", response_model=WebhookOut, status_code=status.HTTP_201_CREATED)
async def register_webhook(tenant_id: str, body: WebhookCreate, services=Depends(get_services),
                           _principal=Depends(require_webhooks_scope)):
    sub = await run_in_threadpool(
        services.dispatcher.register, tenant_id, body.url, body.secret, body.events, body.active
    )
    return _out(sub)


@router.get("/webhooks", response_model=WebhookList)
async def list_webhooks(tenant_id: str, services=Depends(get_services),
                        _principal=Depends(require_webhooks_scope)):
    subs = await run_in_threadpool(services.dispatcher.subscriptions, tenant_id)
    return WebhookList(webhooks=[_out(s) for s in subs], total=len(subs))


@router.post("/webhooks/{subscription_id}/deactivate")
async def deactivate_webhook(tenant_id: str, subscription_id: str, services=Depends(get_services),
                             _principal=Depends(require_webhooks_scope)):
    changed = await run_in_threadpool(services.dispatcher.deactivate, tenant_id, subscription_id)
    return {"deactivated": changed, "id": subscription_id}


@router.post("/events", status_code=status.HTTP_202_ACCEPTED)
async def emit_event(tenant_id: str, body: EventIn, services=Depends(get_services),
                     _principal=Depends(require_events_scope)):
    """Hand a committed domain event to the dispatcher without waiting on delivery."""
    event = WebhookEvent(event=body.event, tenant_id=tenant_id, data=body.data)
    services.dispatcher.emit_nowait(event)
    return {"accepted": True, "event": event.event, "timestamp": event.timestamp}

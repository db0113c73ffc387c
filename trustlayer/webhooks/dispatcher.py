"""Signed webhook fan-out.

``emit`` posts the event to every active subscription of its tenant that
asked for the event name. Each delivery is its own task; one slow or
broken subscriber never holds up the others, and delivery failures are
logged and counted, never raised to the emitter.
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, List, Optional, Set

import httpx
from starlette.concurrency import run_in_threadpool

from ..errors import DeliveryFailure, StorageError
from ..observability import SPAN_ERROR, SPAN_SUCCESS, Observability
from .events import WebhookEvent
from .signing import sign_payload
from .store import SubscriptionStore, WebhookSubscription

USER_AGENT = "trust-layer-webhooks/1"


@dataclass(frozen=True)
class DeliveryResult:
    subscription_id: str
    url: str
    ok: bool
    status_code: Optional[int] = None
    attempts: int = 1
    error: Optional[str] = None


def _retryable(status_code: Optional[int]) -> bool:
    # Network errors (no status), throttling and server errors are worth another try
    return status_code is None or status_code == 429 or status_code >= 500


class WebhookDispatcher:
    def __init__(
        self,
        store: SubscriptionStore,
        observability: Observability,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        max_retries: int = 0,
        retry_backoff: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self._obs = observability
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout
        self.max_retries = max(0, max_retries)
        self.retry_backoff = retry_backoff
        self._sleep = sleep
        self._pending: Set[asyncio.Task] = set()

    # ----- Registration -----
    def register(self, tenant_id: str, url: str, secret: str, events: Iterable[str],
                 active: bool = True) -> WebhookSubscription:
        subscription = WebhookSubscription(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            url=url,
            secret=secret,
            events=frozenset(events),
            active=active,
        )
        self.store.add(subscription)
        self._obs.log("info", "Webhook registered", {
            "subscription_id": subscription.id,
            "tenant_id": tenant_id,
            "url": url,
            "events": sorted(subscription.events),
        }, component="webhooks")
        return subscription

    def deactivate(self, tenant_id: str, subscription_id: str) -> bool:
        changed = self.store.deactivate(tenant_id, subscription_id)
        if changed:
            self._obs.log("info", "Webhook deactivated", {
                "subscription_id": subscription_id, "tenant_id": tenant_id,
            }, component="webhooks")
        return changed

    def subscriptions(self, tenant_id: str) -> List[WebhookSubscription]:
        return self.store.list_for_tenant(tenant_id)

    # ----- HTTP client -----
    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={"User-Agent": USER_AGENT},
            )
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        await self.drain()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ----- Dispatch -----
    async def emit(self, event: WebhookEvent) -> List[DeliveryResult]:
        """Deliver ``event`` to its tenant's subscribers and wait for all to settle."""
        try:
            # SQL stores block; keep the lookup off the event loop
            subscriptions = await run_in_threadpool(self.store.list_for_tenant, event.tenant_id)
        except StorageError as e:
            self._obs.log("error", "Webhook subscriptions unavailable", {
                "event": event.event, "tenant_id": event.tenant_id, "error": str(e),
            }, component="webhooks")
            return []

        targets = [s for s in subscriptions if s.wants(event.event)]
        if not targets:
            self._obs.record_metric("webhook.event.unrouted", 1, {"event": event.event})
            return []

        payload = event.canonical_payload()
        outcomes = await asyncio.gather(
            *(self._deliver(sub, event.event, payload) for sub in targets),
            return_exceptions=True,
        )

        results: List[DeliveryResult] = []
        for sub, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                # _deliver settles its own failures; anything here is unexpected
                self._obs.log("error", "Webhook delivery crashed", {
                    "subscription_id": sub.id, "url": sub.url, "error": repr(outcome),
                }, component="webhooks")
                outcome = DeliveryResult(sub.id, sub.url, ok=False, error=repr(outcome))
            results.append(outcome)

        delivered = sum(1 for r in results if r.ok)
        self._obs.log("info", "Webhook event dispatched", {
            "event": event.event,
            "tenant_id": event.tenant_id,
            "subscribers": len(results),
            "delivered": delivered,
            "failed": len(results) - delivered,
        }, component="webhooks")
        return results

    def emit_nowait(self, event: WebhookEvent) -> asyncio.Task:
        """Schedule ``emit`` on the running loop and return without waiting."""
        task = asyncio.get_running_loop().create_task(self.emit(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for fire-and-forget dispatches still in flight."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _deliver(self, sub: WebhookSubscription, event_name: str, payload: bytes) -> DeliveryResult:
        span = self._obs.start_span("webhook.deliver", {
            "subscription_id": sub.id, "url": sub.url, "event": event_name,
        })
        try:
            result = await self._deliver_with_retry(sub, event_name, payload)
        except BaseException as e:
            self._obs.finish_span(span, SPAN_ERROR, e)
            raise

        if result.ok:
            self._obs.finish_span(span, SPAN_SUCCESS)
            self._obs.record_metric("webhook.delivery", 1, {"outcome": "success"})
            self._obs.mirror("increment_webhook_delivery", "success")
        else:
            failure = DeliveryFailure(sub.url, result.error or "failed", result.status_code)
            self._obs.finish_span(span, SPAN_ERROR, failure)
            self._obs.record_metric("webhook.delivery", 1, {"outcome": "failure"})
            self._obs.mirror("increment_webhook_delivery", "failure")
            self._obs.log("warning", "Webhook delivery failed", {
                "subscription_id": sub.id,
                "url": sub.url,
                "event": event_name,
                "status": result.status_code,
                "attempts": result.attempts,
                "error": failure.reason,
            }, component="webhooks")
        return result

    async def _deliver_with_retry(self, sub: WebhookSubscription, event_name: str,
                                  payload: bytes) -> DeliveryResult:
        attempt = 0
        while True:
            attempt += 1
            status_code, error = await self._post_once(sub, event_name, payload)
            if error is None:
                return DeliveryResult(sub.id, sub.url, ok=True, status_code=status_code, attempts=attempt)
            if attempt > self.max_retries or not _retryable(status_code):
                return DeliveryResult(sub.id, sub.url, ok=False, status_code=status_code,
                                      attempts=attempt, error=error)
            await self._sleep(self.retry_backoff * (2 ** (attempt - 1)))

    async def _post_once(self, sub: WebhookSubscription, event_name: str, payload: bytes):
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Signature": sign_payload(payload, sub.secret),
            "X-Webhook-Event": event_name,
            "X-Webhook-Delivery": str(uuid.uuid4()),
        }
        try:
            r = await self.client.post(sub.url, content=payload, headers=headers, timeout=self.timeout)
        except httpx.TimeoutException:
            return None, "timeout"
        except httpx.ConnectError:
            return None, "conn_refused"
        except httpx.HTTPError as e:
            return None, f"{e.__class__.__name__}: {e}"

        if r.is_success:
            return r.status_code, None
        return r.status_code, f"http_{r.status_code}"

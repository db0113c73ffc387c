import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict

# Common event names. Informational: the dispatcher forwards any name.
PROCESS_STARTED = "process.started"
PROCESS_COMPLETED = "process.completed"
TASK_CREATED = "task.created"
TASK_COMPLETED = "task.completed"
FORM_SUBMITTED = "form.submitted"

WEBHOOK_EVENTS = (
    PROCESS_STARTED,
    PROCESS_COMPLETED,
    TASK_CREATED,
    TASK_COMPLETED,
    FORM_SUBMITTED,
)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class WebhookEvent:
    event: str
    tenant_id: str
    data: Any = None
    timestamp: str = field(default_factory=_timestamp)

    def to_envelope(self) -> Dict[str, Any]:
        return {
            "event": self.event,
            "tenant_id": self.tenant_id,
            "data": self.data,
            "timestamp": self.timestamp,
        }

    def canonical_payload(self) -> bytes:
        """Body bytes that are signed and sent; byte-stable for equal envelopes."""
        return json.dumps(
            self.to_envelope(), sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str
        ).encode("utf-8")

from datetime import datetime
from typing import Any, List

from pydantic import BaseModel, Field, field_validator


class WebhookCreate(BaseModel):
    url: str = Field(..., description="Subscriber endpoint")
    secret: str = Field(..., min_length=8, description="Shared HMAC signing secret")
    events: List[str] = Field(..., min_length=1)
    active: bool = True

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        if " " in v:
            raise ValueError("URL cannot contain spaces")
        return v


class WebhookOut(BaseModel):
    id: str
    tenant_id: str
    url: str
    events: List[str]
    active: bool
    created_at: datetime


class WebhookList(BaseModel):
    webhooks: List[WebhookOut]
    total: int


class EventIn(BaseModel):
    event: str = Field(..., min_length=1, description="Event name, e.g. process.completed")
    data: Any = None

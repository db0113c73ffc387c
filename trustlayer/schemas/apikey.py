from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class ApiKeyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    scopes: List[str] = []


class ApiKeyOut(BaseModel):
    id: str
    tenant_id: str
    name: str
    scopes: List[str]
    created_at: datetime
    revoked_at: Optional[datetime] = None


class ApiKeyIssued(BaseModel):
    api_key: str = Field(..., description="Plaintext secret; shown only once")
    key: ApiKeyOut


class ApiKeyList(BaseModel):
    keys: List[ApiKeyOut]
    total: int

"""
API Key Management Endpoints
"""
from fastapi import APIRouter, Depends, Response, status
from starlette.concurrency import run_in_threadpool

from ..auth.deps import get_services, require_tenant_scope
from ..auth.store import ApiKeyMetadata
from ..schemas.apikey import ApiKeyCreate, ApiKeyIssued, ApiKeyList, ApiKeyOut

router = APIRouter(prefix="/tenants/{tenant_id}/api-keys", tags=["API Keys"])

require_keys_scope = require_tenant_scope("keys:manage")


def _out(meta: ApiKeyMetadata) -> ApiKeyOut:
    return ApiKeyOut(**meta.to_dict())


@router.post("", response_model=ApiKeyIssued, status_code=status.HTTP_201_CREATED)
async def create_key(
    tenant_id: str,
    body: ApiKeyCreate,
    response: Response,
    services=Depends(get_services),
    _principal=Depends(require_keys_scope),
):
    """Issue a key for the tenant. The plaintext secret is returned once."""
    secret, key = await run_in_threadpool(services.registry.issue, tenant_id, body.scopes, body.name)
    response.headers["Cache-Control"] = "no-store"
    return ApiKeyIssued(api_key=secret, key=_out(key.metadata()))


@router.get("", response_model=ApiKeyList)
async def list_keys(tenant_id: str, services=Depends(get_services), _principal=Depends(require_keys_scope)):
    keys = await run_in_threadpool(services.registry.list, tenant_id)
    return ApiKeyList(keys=[_out(k) for k in keys], total=len(keys))


@router.delete("/{key_id}")
async def revoke_key(tenant_id: str, key_id: str, services=Depends(get_services),
                     _principal=Depends(require_keys_scope)):
    revoked = await run_in_threadpool(services.registry.revoke, key_id, tenant_id)
    return {"revoked": revoked, "key_id": key_id}

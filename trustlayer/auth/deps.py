import hmac
import logging
import re
from typing import Optional

from fastapi import Depends, Request

from ..errors import Forbidden, Unauthorized
from .registry import Principal

log = logging.getLogger("trustlayer.auth")

ADMIN_SUPER = {"admin", "*"}

OPERATOR = Principal(id="operator", role="admin")


def get_services(request: Request):
    return request.app.state.services


def _bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    parts = auth.strip().split(None, 1)
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip()
    return None


def _norm_scopes(val) -> set:
    if not val:
        return set()
    if isinstance(val, str):
        return {p.lower() for p in re.split(r"[\s,]+", val.strip()) if p}
    return {str(s).lower() for s in val}


def require_principal(request: Request, services=Depends(get_services)) -> Principal:
    """Caller identity from an API key, or from the operator bearer token."""
    principal = getattr(request.state, "principal", None)
    if principal is not None:
        return principal

    token = _bearer_token(request)
    admin_token = services.settings.admin_token
    if token and admin_token and hmac.compare_digest(token.encode(), admin_token.encode()):
        request.state.principal = OPERATOR
        return OPERATOR

    raise Unauthorized("Missing or invalid credentials", title="Unauthorized")


def require_admin(principal: Principal = Depends(require_principal)) -> Principal:
    if principal.role == "admin" or _norm_scopes(principal.scopes) & ADMIN_SUPER:
        return principal
    log.warning("AUTH: admin required, principal=%s", principal.id)
    raise Forbidden("Admin scope required")


def require_tenant_scope(*allowed: str):
    """Admit operators, or API principals of the path's tenant holding one of ``allowed``."""
    allowed_set = {s.lower() for s in allowed}

    def dep(tenant_id: str, principal: Principal = Depends(require_principal)) -> Principal:
        if principal.role == "admin":
            return principal

        if principal.tenant_id != tenant_id:
            log.warning("AUTH: cross-tenant access denied, principal=%s tenant=%s", principal.id, tenant_id)
            raise Forbidden("API key does not belong to this tenant")

        token_scopes = _norm_scopes(principal.scopes)
        if token_scopes & ADMIN_SUPER or token_scopes & allowed_set:
            return principal

        log.warning("AUTH: scope denied, need=%s token=%s", sorted(allowed_set), sorted(token_scopes))
        raise Forbidden("forbidden: missing scope")

    return dep

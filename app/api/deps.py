import hashlib
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from app.config import settings
from app.db import get_db
from app.models.tenant import Tenant
from app.services.common import secure_compare


def hash_api_key(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class OperatorContext:
    """Authenticated caller of an operator endpoint.

    Platform operators act across tenants and may narrow to one with the
    ``X-Tenant-Code`` header; tenant operators are pinned to their school.
    """

    tenant: Tenant | None
    is_platform: bool = False

    @property
    def tenant_id(self):
        return self.tenant.id if self.tenant else None


def _ensure_tenant_usable(tenant: Tenant) -> Tenant:
    if not tenant.is_active:
        raise HTTPException(status_code=403, detail="Tenant is inactive")
    if not tenant.is_subscription_valid():
        raise HTTPException(status_code=403, detail="Subscription is not valid")
    return tenant


def authenticate_api_key(
    db: Session, api_key: str | None, tenant_code: str | None = None
) -> OperatorContext:
    if not api_key:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if settings.platform_api_key and secure_compare(settings.platform_api_key, api_key):
        if not tenant_code:
            return OperatorContext(tenant=None, is_platform=True)
        tenant = db.query(Tenant).filter(Tenant.code == tenant_code).first()
        if not tenant:
            raise HTTPException(status_code=404, detail="Tenant not found")
        return OperatorContext(tenant=_ensure_tenant_usable(tenant), is_platform=True)
    tenant = (
        db.query(Tenant)
        .filter(Tenant.operator_key_hash == hash_api_key(api_key))
        .first()
    )
    if not tenant:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return OperatorContext(tenant=_ensure_tenant_usable(tenant))


def require_operator(
    request: Request,
    x_api_key: str | None = Header(default=None),
    x_tenant_code: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> OperatorContext:
    context = authenticate_api_key(db, x_api_key, x_tenant_code)
    request.state.actor_type = "platform" if context.is_platform else "tenant_operator"
    request.state.actor_id = str(context.tenant_id) if context.tenant else "platform"
    return context


def require_tenant(context: OperatorContext = Depends(require_operator)) -> Tenant:
    if context.tenant is None:
        raise HTTPException(status_code=400, detail="X-Tenant-Code header is required")
    return context.tenant


def require_platform(context: OperatorContext = Depends(require_operator)) -> OperatorContext:
    if not context.is_platform:
        raise HTTPException(status_code=403, detail="Forbidden")
    return context


__all__ = [
    "get_db",
    "OperatorContext",
    "hash_api_key",
    "require_operator",
    "require_platform",
    "require_tenant",
]

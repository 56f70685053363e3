from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import require_tenant
from app.db import get_db
from app.models.tenant import Tenant
from app.schemas.payments import WebhookRegistration
from app.services import payments as payments_service

router = APIRouter(prefix="/integrations", tags=["integrations"])


@router.post("/{provider}/register-webhook")
def register_bank_webhook(
    provider: str,
    payload: WebhookRegistration,
    tenant: Tenant = Depends(require_tenant),
    db: Session = Depends(get_db),
):
    return payments_service.provider_admin.register_bank_webhook(
        db, tenant, provider, payload.callback_url
    )

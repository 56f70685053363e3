from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from app.api.deps import OperatorContext, require_operator, require_tenant
from app.db import get_db
from app.models.tenant import Tenant
from app.schemas.common import ListResponse
from app.schemas.payments import LedgerEntryRead, ManualTransactionCreate, ReverseRequest
from app.services import payments as payments_service

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("", response_model=ListResponse[LedgerEntryRead])
def list_transactions(
    status: str | None = None,
    source: str | None = None,
    provider: str | None = None,
    account_id: str | None = None,
    suspense_only: bool = False,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    context: OperatorContext = Depends(require_operator),
    db: Session = Depends(get_db),
):
    return payments_service.transactions.list_response(
        db,
        order_by,
        order_dir,
        limit,
        offset,
        tenant=context.tenant,
        status=status,
        source=source,
        provider=provider,
        account_id=account_id,
        suspense_only=suspense_only,
    )


@router.post("", response_model=LedgerEntryRead, status_code=status.HTTP_201_CREATED)
def create_transaction(
    payload: ManualTransactionCreate,
    request: Request,
    response: Response,
    tenant: Tenant = Depends(require_tenant),
    db: Session = Depends(get_db),
):
    entry, created = payments_service.manual_payments.record_transaction(
        db, tenant, payload, recorded_by=getattr(request.state, "actor_id", None)
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return entry


@router.get("/{entry_id}", response_model=LedgerEntryRead)
def get_transaction(
    entry_id: str,
    context: OperatorContext = Depends(require_operator),
    db: Session = Depends(get_db),
):
    return payments_service.transactions.get(db, context.tenant, entry_id)


@router.post("/{entry_id}/reverse", response_model=LedgerEntryRead)
def reverse_transaction(
    entry_id: str,
    payload: ReverseRequest | None = None,
    context: OperatorContext = Depends(require_operator),
    db: Session = Depends(get_db),
):
    reason = payload.reason if payload else None
    return payments_service.transactions.reverse(db, context.tenant, entry_id, reason)

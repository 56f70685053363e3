from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from app.api.deps import require_tenant
from app.db import get_db
from app.models.tenant import Tenant
from app.schemas.payments import (
    BankPaymentCreate,
    CashPaymentCreate,
    LedgerEntryRead,
    PaymentStats,
)
from app.services import payments as payments_service

router = APIRouter(prefix="/payments", tags=["payments"])


def _recorded(response: Response, created: bool) -> None:
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK


@router.post("/cash", response_model=LedgerEntryRead, status_code=status.HTTP_201_CREATED)
def record_cash_payment(
    payload: CashPaymentCreate,
    request: Request,
    response: Response,
    tenant: Tenant = Depends(require_tenant),
    db: Session = Depends(get_db),
):
    entry, created = payments_service.manual_payments.record_cash(
        db, tenant, payload, recorded_by=getattr(request.state, "actor_id", None)
    )
    _recorded(response, created)
    return entry


@router.post("/bank", response_model=LedgerEntryRead, status_code=status.HTTP_201_CREATED)
def record_bank_payment(
    payload: BankPaymentCreate,
    request: Request,
    response: Response,
    tenant: Tenant = Depends(require_tenant),
    db: Session = Depends(get_db),
):
    entry, created = payments_service.manual_payments.record_bank(
        db, tenant, payload, recorded_by=getattr(request.state, "actor_id", None)
    )
    _recorded(response, created)
    return entry


@router.get("/stats", response_model=PaymentStats)
def payment_stats(
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    tenant: Tenant = Depends(require_tenant),
    db: Session = Depends(get_db),
):
    return payments_service.manual_payments.stats(db, tenant, start_date, end_date)

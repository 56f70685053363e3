from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.api.deps import OperatorContext, require_operator, require_tenant
from app.db import get_db
from app.models.tenant import Tenant
from app.schemas.payments import (
    IngestResult,
    ReconciliationRunCreate,
    ReconciliationRunRead,
    ReplayRequest,
)
from app.services import payments as payments_service
from app.tasks.reconciliation import reconcile_integration

router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])


@router.post(
    "/runs",
    response_model=ReconciliationRunRead,
    status_code=status.HTTP_202_ACCEPTED,
)
def start_reconciliation_run(
    payload: ReconciliationRunCreate,
    tenant: Tenant = Depends(require_tenant),
    db: Session = Depends(get_db),
):
    run = payments_service.provider_admin.start_run(
        db, tenant, payload.provider, payload.from_date, payload.to_date
    )
    reconcile_integration.delay(str(run.id))
    return run


@router.get("/runs/{run_id}", response_model=ReconciliationRunRead)
def get_reconciliation_run(
    run_id: str,
    context: OperatorContext = Depends(require_operator),
    db: Session = Depends(get_db),
):
    return payments_service.provider_admin.get_run(db, run_id, context.tenant)


@router.post("/runs/{run_id}/cancel", response_model=ReconciliationRunRead)
def cancel_reconciliation_run(
    run_id: str,
    context: OperatorContext = Depends(require_operator),
    db: Session = Depends(get_db),
):
    return payments_service.provider_admin.cancel_run(db, run_id, context.tenant)


@router.post("/replay", response_model=IngestResult)
def replay_payment(
    payload: ReplayRequest,
    context: OperatorContext = Depends(require_operator),
    db: Session = Depends(get_db),
):
    return payments_service.provider_admin.replay(
        db, payload.provider, payload.payload, tenant=context.tenant
    )

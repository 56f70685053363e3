from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.api.deps import OperatorContext, require_platform
from app.db import get_db
from app.schemas.payments import MpesaUrlRegistration
from app.services import payment_webhooks as payment_webhooks_service
from app.services import payments as payments_service

router = APIRouter(prefix="/mpesa", tags=["mpesa"])


@router.post("/validation")
async def mpesa_validation():
    return payment_webhooks_service.process_mpesa_validation()


@router.post("/confirmation")
async def mpesa_confirmation(
    request: Request,
    token: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    body = await request.body()
    return await run_in_threadpool(
        payment_webhooks_service.process_mpesa_confirmation,
        db=db,
        body=body,
        token=token,
    )


@router.post("/register")
def mpesa_register_urls(
    payload: MpesaUrlRegistration,
    _context: OperatorContext = Depends(require_platform),
    db: Session = Depends(get_db),
):
    return payments_service.provider_admin.register_mpesa_urls(
        db, payload.confirmation_url, payload.validation_url
    )

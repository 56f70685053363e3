from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.db import get_db
from app.services import payment_webhooks as payment_webhooks_service

router = APIRouter(prefix="/webhooks/bank", tags=["bank-webhooks"])


@router.post("/{provider}")
async def bank_webhook(provider: str, request: Request, db: Session = Depends(get_db)):
    body = await request.body()
    return await run_in_threadpool(
        payment_webhooks_service.process_bank_webhook,
        db=db,
        provider=provider,
        body=body,
        headers=dict(request.headers),
    )

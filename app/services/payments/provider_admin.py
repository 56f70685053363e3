"""Operator-side provider actions: replays, reconciliation runs and callback
registration. Domain errors are mapped to HTTP errors here."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.models.ledger import PaymentProviderName
from app.models.reconciliation import ReconciliationRun
from app.models.tenant import Tenant
from app.services.common import coerce_uuid
from app.services.payments.adapters import BANK_PROVIDERS, MpesaClient
from app.services.payments.errors import (
    PaymentValidationError,
    ProviderAPIError,
    TenantNotFound,
)
from app.services.payments.pipeline import get_pipeline
from app.services.payments.reconciliation import ReconciliationSweeper
from app.services.payments.tokens import TokenStore

logger = logging.getLogger(__name__)


class ProviderAdmin:
    def __init__(self, sweeper: ReconciliationSweeper, token_store: TokenStore):
        self.sweeper = sweeper
        self.token_store = token_store

    def replay(
        self,
        db: Session,
        provider: PaymentProviderName | str,
        payload: dict[str, Any],
        tenant: Tenant | None = None,
    ) -> dict[str, Any]:
        try:
            outcome = get_pipeline().replay(db, provider, payload, tenant=tenant)
        except PaymentValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except TenantNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        entry = outcome.entry
        return {
            "outcome": outcome.status.value,
            "entry_id": entry.id if entry is not None else None,
            "status": entry.status if entry is not None else None,
            "message": "Already processed" if outcome.is_duplicate else None,
        }

    def register_mpesa_urls(
        self, db: Session, confirmation_url: str, validation_url: str
    ) -> dict[str, Any]:
        client = MpesaClient(self.token_store)
        try:
            return client.register_urls(db, confirmation_url, validation_url)
        except ProviderAPIError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc

    def register_bank_webhook(
        self, db: Session, tenant: Tenant, provider: str, callback_url: str
    ) -> dict[str, Any]:
        try:
            provider_name = PaymentProviderName(provider)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Unknown provider") from exc
        if provider_name not in BANK_PROVIDERS:
            raise HTTPException(status_code=400, detail="Not a bank provider")
        try:
            integration = self.sweeper.integration_for(db, tenant.id, provider_name)
        except TenantNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        try:
            result = self.sweeper.client_for(provider_name).register_webhook(
                db, integration, callback_url
            )
        except ProviderAPIError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        integration.callback_url = callback_url
        db.commit()
        logger.info(
            "integration_callback_saved tenant_id=%s provider=%s",
            tenant.id,
            provider_name.value,
        )
        return result

    def start_run(
        self, db: Session, tenant: Tenant, provider: PaymentProviderName, from_date, to_date
    ) -> ReconciliationRun:
        try:
            return self.sweeper.start(db, tenant, provider, from_date, to_date)
        except PaymentValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except TenantNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @staticmethod
    def get_run(db: Session, run_id: str, tenant: Tenant | None = None) -> ReconciliationRun:
        run = db.get(ReconciliationRun, coerce_uuid(run_id))
        if not run or (tenant is not None and run.tenant_id != tenant.id):
            raise HTTPException(status_code=404, detail="Reconciliation run not found")
        return run

    def cancel_run(
        self, db: Session, run_id: str, tenant: Tenant | None = None
    ) -> ReconciliationRun:
        try:
            return self.sweeper.request_cancel(
                db, run_id, tenant_id=tenant.id if tenant is not None else None
            )
        except PaymentValidationError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

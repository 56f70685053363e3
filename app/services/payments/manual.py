"""Operator-entered payments and charges, and per-tenant payment stats."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.ledger import (
    LedgerDirection,
    LedgerEntry,
    LedgerStatus,
    PaymentProviderName,
    PaymentSource,
)
from app.models.tenant import Tenant
from app.schemas.payments import BankPaymentCreate, CashPaymentCreate, ManualTransactionCreate
from app.services.common import round_money
from app.services.payments.adapters import normalize_phone
from app.services.payments.errors import PaymentValidationError, TenantNotFound
from app.services.payments.notice import PaymentNotice
from app.services.payments.pipeline import get_pipeline

logger = logging.getLogger(__name__)


def generate_cash_reference() -> str:
    return f"CASH-{uuid.uuid4().hex[:12].upper()}"


def generate_transaction_reference() -> str:
    return f"TXN-{uuid.uuid4().hex[:12].upper()}"


class ManualPayments:
    @staticmethod
    def _record(db: Session, tenant: Tenant, notice: PaymentNotice):
        try:
            outcome, _account = get_pipeline().record_manual(db, tenant, notice)
        except PaymentValidationError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except TenantNotFound as exc:
            raise HTTPException(status_code=403, detail=str(exc)) from exc
        created = not outcome.is_duplicate
        logger.info(
            "manual_payment_recorded tenant_id=%s external_id=%s created=%s",
            tenant.id,
            notice.transaction_id,
            created,
        )
        return outcome.entry, created

    @staticmethod
    def record_cash(
        db: Session, tenant: Tenant, payload: CashPaymentCreate, recorded_by: str | None = None
    ) -> tuple[LedgerEntry, bool]:
        transaction_id = (payload.receipt_number or "").strip() or generate_cash_reference()
        notice = PaymentNotice(
            provider=PaymentProviderName.manual,
            source=PaymentSource.cash,
            transaction_id=transaction_id,
            amount=round_money(payload.amount),
            raw_reference=payload.reference,
            payer_name=payload.payer_name or "Cash Payment",
            payer_phone=normalize_phone(payload.payer_phone),
            occurred_at=payload.occurred_at,
            raw_payload={
                **payload.model_dump(mode="json"),
                "recorded_by": recorded_by,
            },
            direction=LedgerDirection.credit,
            memo=payload.memo,
        )
        return ManualPayments._record(db, tenant, notice)

    @staticmethod
    def record_bank(
        db: Session, tenant: Tenant, payload: BankPaymentCreate, recorded_by: str | None = None
    ) -> tuple[LedgerEntry, bool]:
        notice = PaymentNotice(
            provider=PaymentProviderName.manual,
            source=payload.source,
            transaction_id=payload.transaction_id.strip(),
            amount=round_money(payload.amount),
            raw_reference=payload.reference,
            payer_name=payload.payer_name or "Bank Transfer",
            payer_phone=normalize_phone(payload.payer_phone),
            occurred_at=payload.occurred_at,
            raw_payload={
                **payload.model_dump(mode="json"),
                "recorded_by": recorded_by,
            },
            direction=LedgerDirection.credit,
            memo=payload.memo,
        )
        return ManualPayments._record(db, tenant, notice)

    @staticmethod
    def record_transaction(
        db: Session,
        tenant: Tenant,
        payload: ManualTransactionCreate,
        recorded_by: str | None = None,
    ) -> tuple[LedgerEntry, bool]:
        """Operator entry in either direction; a debit raises the balance owed."""
        transaction_id = (payload.transaction_id or "").strip() or generate_transaction_reference()
        default_name = "Manual Entry" if payload.direction == LedgerDirection.credit else None
        notice = PaymentNotice(
            provider=PaymentProviderName.manual,
            source=payload.source,
            transaction_id=transaction_id,
            amount=round_money(payload.amount),
            raw_reference=payload.reference,
            payer_name=payload.payer_name or default_name,
            payer_phone=normalize_phone(payload.payer_phone),
            occurred_at=payload.occurred_at,
            raw_payload={
                **payload.model_dump(mode="json"),
                "recorded_by": recorded_by,
            },
            direction=payload.direction,
            memo=payload.memo,
        )
        return ManualPayments._record(db, tenant, notice)

    @staticmethod
    def stats(
        db: Session,
        tenant: Tenant,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> dict:
        """Completed credit totals grouped by source."""
        query = (
            db.query(
                LedgerEntry.source,
                func.count(LedgerEntry.id),
                func.coalesce(func.sum(LedgerEntry.amount), 0),
            )
            .filter(LedgerEntry.tenant_id == tenant.id)
            .filter(LedgerEntry.direction == LedgerDirection.credit)
            .filter(LedgerEntry.status == LedgerStatus.completed)
        )
        if start_date:
            query = query.filter(LedgerEntry.created_at >= start_date)
        if end_date:
            query = query.filter(LedgerEntry.created_at <= end_date)
        rows = query.group_by(LedgerEntry.source).all()

        by_source = [
            {"source": source, "count": int(count), "total": round_money(total)}
            for source, count, total in rows
        ]
        pending_count = (
            db.query(func.count(LedgerEntry.id))
            .filter(LedgerEntry.tenant_id == tenant.id)
            .filter(LedgerEntry.status == LedgerStatus.pending)
            .scalar()
        )
        return {
            "tenant_id": tenant.id,
            "total_count": sum(item["count"] for item in by_source),
            "total_amount": round_money(
                sum((item["total"] for item in by_source), Decimal("0"))
            ),
            "pending_count": int(pending_count or 0),
            "by_source": by_source,
        }

"""Operator access to ledger entries."""

from __future__ import annotations

from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.models.ledger import (
    LedgerEntry,
    LedgerStatus,
    PaymentProviderName,
    PaymentSource,
)
from app.models.tenant import Tenant
from app.services.common import coerce_uuid, validate_enum
from app.services.payments.errors import AlreadyReversed, PaymentValidationError
from app.services.payments.ledger import LedgerWriter
from app.services.response import ListResponseMixin


def _tenant_filter(query, tenant: Tenant | None, suspense_only: bool = False):
    if tenant is not None:
        query = query.filter(LedgerEntry.tenant_id == tenant.id)
    if suspense_only:
        query = query.filter(LedgerEntry.account_id.is_(None)).filter(
            LedgerEntry.status == LedgerStatus.pending
        )
    return query


class Transactions(ListResponseMixin):
    order_columns = {
        "created_at": LedgerEntry.created_at,
        "occurred_at": LedgerEntry.occurred_at,
        "amount": LedgerEntry.amount,
    }
    tiebreak_column = LedgerEntry.id

    @staticmethod
    def get(db: Session, tenant: Tenant | None, entry_id: str) -> LedgerEntry:
        entry = db.get(LedgerEntry, coerce_uuid(entry_id))
        if not entry or (tenant is not None and entry.tenant_id != tenant.id):
            raise HTTPException(status_code=404, detail="Transaction not found")
        return entry

    @classmethod
    def filtered_query(
        cls,
        db: Session,
        tenant: Tenant | None = None,
        status: str | None = None,
        source: str | None = None,
        provider: str | None = None,
        account_id: str | None = None,
        suspense_only: bool = False,
    ):
        query = _tenant_filter(db.query(LedgerEntry), tenant, suspense_only)
        if status:
            query = query.filter(
                LedgerEntry.status == validate_enum(status, LedgerStatus, "status")
            )
        if source:
            query = query.filter(
                LedgerEntry.source == validate_enum(source, PaymentSource, "source")
            )
        if provider:
            query = query.filter(
                LedgerEntry.provider
                == validate_enum(provider, PaymentProviderName, "provider")
            )
        if account_id:
            query = query.filter(LedgerEntry.account_id == coerce_uuid(account_id))
        return query

    @staticmethod
    def reverse(
        db: Session, tenant: Tenant | None, entry_id: str, reason: str | None = None
    ) -> LedgerEntry:
        entry = Transactions.get(db, tenant, entry_id)
        try:
            return LedgerWriter.reverse(db, entry.id, reason=reason)
        except AlreadyReversed as exc:
            raise HTTPException(status_code=400, detail="Transaction already reversed") from exc
        except PaymentValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

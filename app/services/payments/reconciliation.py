"""Reconciliation sweeper: diff a bank statement against the ledger.

Detection only. Gaps are reported with the provider's row so an operator can
replay it through the normal pipeline.
"""

from __future__ import annotations

import logging
import time
from datetime import UTC, date, datetime, time as dt_time, timedelta
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.config import settings
from app.metrics import RECONCILIATION_GAPS, observe_reconciliation
from app.models.ledger import LedgerEntry, PaymentProviderName
from app.models.reconciliation import ReconciliationRun, ReconciliationStatus
from app.models.tenant import BankProvider, Tenant, TenantIntegration
from app.services.common import coerce_uuid
from app.services.payments.adapters import (
    BANK_CLIENTS,
    get_bank_adapter,
    parse_timestamp,
)
from app.services.payments.adapters.base import KENYA_TZ
from app.services.payments.bank_api import BankAPIClient
from app.services.payments.errors import PaymentValidationError, TenantNotFound
from app.services.payments.tokens import TokenStore

logger = logging.getLogger(__name__)

_FALLBACK_ID_FIELDS = (
    "transactionReference",
    "transaction_reference",
    "TransactionID",
    "TransID",
    "id",
)


def day_range(from_date: date, to_date: date):
    current = from_date
    while current <= to_date:
        yield current
        current += timedelta(days=1)


def window_bounds(from_date: date, to_date: date) -> tuple[datetime, datetime]:
    """Statement dates are Kenyan calendar days; return UTC ``[start, end)``."""
    start = datetime.combine(from_date, dt_time.min, tzinfo=KENYA_TZ)
    end = datetime.combine(to_date + timedelta(days=1), dt_time.min, tzinfo=KENYA_TZ)
    return start.astimezone(UTC), end.astimezone(UTC)


class ReconciliationSweeper:
    def __init__(
        self,
        token_store: TokenStore | None = None,
        clients: dict[PaymentProviderName, BankAPIClient] | None = None,
    ):
        self.token_store = token_store or TokenStore()
        self._clients = clients or {}

    def client_for(self, provider: PaymentProviderName) -> BankAPIClient:
        if provider not in self._clients:
            client_cls = BANK_CLIENTS.get(provider)
            if client_cls is None:
                raise PaymentValidationError(f"Not a bank provider: {provider.value}")
            self._clients[provider] = client_cls(self.token_store)
        return self._clients[provider]

    @staticmethod
    def integration_for(db: Session, tenant_id, provider: PaymentProviderName) -> TenantIntegration:
        integration = (
            db.query(TenantIntegration)
            .filter(TenantIntegration.tenant_id == tenant_id)
            .filter(TenantIntegration.provider == BankProvider(provider.value))
            .filter(TenantIntegration.is_enabled.is_(True))
            .first()
        )
        if not integration:
            raise TenantNotFound(f"No enabled {provider.value} integration for tenant")
        return integration

    def start(
        self,
        db: Session,
        tenant: Tenant,
        provider: PaymentProviderName | str,
        from_date: date,
        to_date: date,
    ) -> ReconciliationRun:
        provider = PaymentProviderName(provider)
        if to_date < from_date:
            raise PaymentValidationError("to_date must not be before from_date")
        if (to_date - from_date).days + 1 > settings.reconciliation_max_days:
            raise PaymentValidationError(
                f"Window exceeds {settings.reconciliation_max_days} days"
            )
        self.integration_for(db, tenant.id, provider)
        run = ReconciliationRun(
            tenant_id=tenant.id,
            provider=provider.value,
            from_date=from_date,
            to_date=to_date,
            status=ReconciliationStatus.running,
        )
        db.add(run)
        db.commit()
        db.refresh(run)
        logger.info(
            "reconciliation_started run_id=%s tenant_id=%s provider=%s from=%s to=%s",
            run.id,
            tenant.id,
            provider.value,
            from_date,
            to_date,
        )
        return run

    @staticmethod
    def _row_id(row: dict[str, Any], id_field: str) -> str | None:
        for field in (id_field, *_FALLBACK_ID_FIELDS):
            value = row.get(field)
            if value not in (None, ""):
                return str(value).strip()
        return None

    @staticmethod
    def _cancel_requested(db: Session, run: ReconciliationRun) -> bool:
        db.refresh(run, ["status"])
        return run.status == ReconciliationStatus.cancel_requested

    def ledger_ids(
        self, db: Session, tenant_id, provider: PaymentProviderName, from_date: date, to_date: date
    ) -> set[str]:
        start, end = window_bounds(from_date, to_date)
        effective_at = func.coalesce(LedgerEntry.occurred_at, LedgerEntry.created_at)
        rows = (
            db.query(LedgerEntry.external_id)
            .filter(LedgerEntry.tenant_id == tenant_id)
            .filter(LedgerEntry.provider == provider)
            .filter(effective_at >= start)
            .filter(effective_at < end)
            .all()
        )
        return {row[0] for row in rows}

    def run(self, db: Session, run_id) -> ReconciliationRun:
        """Execute a started run day by day, honouring cancellation between days."""
        run = db.get(ReconciliationRun, coerce_uuid(run_id))
        if run is None:
            raise PaymentValidationError("Reconciliation run not found")
        if run.status != ReconciliationStatus.running:
            return run
        provider = PaymentProviderName(run.provider)
        adapter = get_bank_adapter(provider)
        client = self.client_for(provider)
        started = time.monotonic()

        bank_rows: dict[str, dict[str, Any]] = {}
        try:
            integration = self.integration_for(db, run.tenant_id, provider)
            for day in day_range(run.from_date, run.to_date):
                if self._cancel_requested(db, run):
                    run.status = ReconciliationStatus.cancelled
                    run.finished_at = datetime.now(UTC)
                    db.commit()
                    observe_reconciliation(provider.value, "cancelled", time.monotonic() - started)
                    logger.info("reconciliation_cancelled run_id=%s day=%s", run.id, day)
                    return run
                for row in client.fetch_transactions(db, integration, day, day):
                    external_id = self._row_id(row, adapter.transaction_field)
                    if external_id:
                        bank_rows.setdefault(external_id, row)

            ledger_ids = self.ledger_ids(db, run.tenant_id, provider, run.from_date, run.to_date)
        except Exception as exc:
            db.rollback()
            run.status = ReconciliationStatus.failed
            run.error = str(exc)
            run.finished_at = datetime.now(UTC)
            db.commit()
            observe_reconciliation(provider.value, "failed", time.monotonic() - started)
            logger.error("reconciliation_failed run_id=%s error=%s", run.id, exc)
            raise

        missing_from_ledger = [
            self._describe(external_id, row, adapter)
            for external_id, row in sorted(bank_rows.items())
            if external_id not in ledger_ids
        ]
        missing_from_provider = sorted(ledger_ids - set(bank_rows))

        run.bank_side_count = len(bank_rows)
        run.ledger_side_count = len(ledger_ids)
        run.missing_from_ledger = missing_from_ledger
        run.missing_from_provider = missing_from_provider
        run.status = ReconciliationStatus.completed
        run.finished_at = datetime.now(UTC)
        integration.last_sync_at = run.finished_at
        db.commit()
        db.refresh(run)

        if missing_from_ledger:
            RECONCILIATION_GAPS.labels(provider=provider.value).inc(len(missing_from_ledger))
        observe_reconciliation(provider.value, "completed", time.monotonic() - started)
        logger.info(
            "reconciliation_completed run_id=%s bank=%s ledger=%s missing=%s",
            run.id,
            run.bank_side_count,
            run.ledger_side_count,
            len(missing_from_ledger),
        )
        return run

    @staticmethod
    def _describe(external_id: str, row: dict[str, Any], adapter) -> dict[str, Any]:
        occurred = parse_timestamp(row.get(adapter.time_field)) if adapter.time_field else None
        amount = row.get(adapter.amount_field)
        return {
            "transaction_id": external_id,
            "amount": str(amount) if amount is not None else None,
            "reference": row.get(adapter.reference_field),
            "occurred_at": occurred.isoformat() if occurred else None,
            "payload": row,
        }

    def reconcile(
        self,
        db: Session,
        tenant: Tenant,
        provider: PaymentProviderName | str,
        from_date: date,
        to_date: date,
    ) -> dict[str, Any]:
        run = self.run(db, self.start(db, tenant, provider, from_date, to_date).id)
        return {
            "run_id": run.id,
            "status": run.status.value,
            "bank_side_count": run.bank_side_count,
            "ledger_side_count": run.ledger_side_count,
            "missing_from_ledger": run.missing_from_ledger or [],
            "missing_from_provider": run.missing_from_provider or [],
        }

    @staticmethod
    def request_cancel(db: Session, run_id, tenant_id=None) -> ReconciliationRun:
        run = db.get(ReconciliationRun, coerce_uuid(run_id))
        if run is None or (tenant_id is not None and run.tenant_id != coerce_uuid(tenant_id)):
            raise PaymentValidationError("Reconciliation run not found")
        if run.status == ReconciliationStatus.running:
            run.status = ReconciliationStatus.cancel_requested
            db.commit()
            db.refresh(run)
            logger.info("reconciliation_cancel_requested run_id=%s", run.id)
        return run

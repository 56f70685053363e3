"""Ledger writer: the only code that touches account balances."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.models.account import Account
from app.models.ledger import LedgerEntry, LedgerStatus, scope_key_for
from app.services.common import coerce_uuid
from app.services.payments.errors import AlreadyReversed, PaymentValidationError
from app.services.payments.notice import PaymentNotice, TenantScope

logger = logging.getLogger(__name__)

REVERSIBLE_STATUSES = (LedgerStatus.completed, LedgerStatus.pending)


def apply_balance_delta(db: Session, account_id, delta: Decimal) -> None:
    """Atomic ``balance = balance + delta`` evaluated by the database."""
    db.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(balance=Account.balance + delta)
        .execution_options(synchronize_session=False)
    )
    account = db.identity_map.get(db.identity_key(Account, account_id))
    if account is not None:
        db.expire(account, ["balance"])


class LedgerWriter:
    @staticmethod
    def write(
        db: Session,
        notice: PaymentNotice,
        scope: TenantScope,
        account: Account | None,
    ) -> LedgerEntry:
        """Stage the entry and its balance effect in the current transaction.

        The caller owns the commit; an ``IntegrityError`` on flush means a
        concurrent delivery of the same transaction won the race.
        """
        tenant_id = account.tenant_id if account is not None else scope.tenant_id
        entry = LedgerEntry(
            external_id=notice.transaction_id,
            scope_key=scope_key_for(tenant_id),
            tenant_id=tenant_id,
            account_id=account.id if account is not None else None,
            amount=notice.amount,
            source=notice.source,
            provider=notice.provider,
            direction=notice.direction,
            status=LedgerStatus.completed if account is not None else LedgerStatus.pending,
            reference=notice.raw_reference,
            payer_name=notice.payer_name,
            payer_phone=notice.payer_phone,
            raw_payload=notice.raw_payload or None,
            memo=notice.memo,
            occurred_at=notice.occurred_at,
        )
        db.add(entry)
        db.flush()
        if account is not None:
            apply_balance_delta(db, account.id, entry.balance_delta)
        return entry

    @staticmethod
    def commit(
        db: Session,
        notice: PaymentNotice,
        scope: TenantScope,
        account: Account | None,
    ) -> LedgerEntry:
        try:
            entry = LedgerWriter.write(db, notice, scope, account)
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(entry)
        logger.info(
            "ledger_entry_committed entry_id=%s external_id=%s status=%s",
            entry.id,
            entry.external_id,
            entry.status.value,
        )
        return entry

    @staticmethod
    def reverse(db: Session, entry_id, tenant_id=None, reason: str | None = None) -> LedgerEntry:
        """Move an entry to ``reversed`` exactly once and undo its balance effect.

        The status transition is a conditional UPDATE, so of two concurrent
        reversals only one sees a matching row.
        """
        entry = db.get(LedgerEntry, coerce_uuid(entry_id))
        if entry is None or (tenant_id is not None and entry.tenant_id != coerce_uuid(tenant_id)):
            raise PaymentValidationError("Ledger entry not found", field="entry_id")
        if entry.status == LedgerStatus.reversed:
            raise AlreadyReversed(f"Entry {entry.external_id} already reversed")
        if entry.status not in REVERSIBLE_STATUSES:
            raise PaymentValidationError(
                f"Entry in status {entry.status.value} cannot be reversed", field="status"
            )
        external_id = entry.external_id
        try:
            result = db.execute(
                update(LedgerEntry)
                .where(LedgerEntry.id == entry.id)
                .where(LedgerEntry.status.in_(REVERSIBLE_STATUSES))
                .values(
                    status=LedgerStatus.reversed,
                    reversed_at=datetime.now(UTC),
                    memo=reason if reason else LedgerEntry.memo,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                raise AlreadyReversed(f"Entry {external_id} already reversed")
            if entry.account_id is not None:
                apply_balance_delta(db, entry.account_id, -entry.balance_delta)
            db.commit()
        except AlreadyReversed:
            raise
        except Exception:
            db.rollback()
            raise
        db.refresh(entry)
        logger.info(
            "ledger_entry_reversed entry_id=%s external_id=%s direction=%s",
            entry.id,
            entry.external_id,
            entry.direction.value,
        )
        return entry


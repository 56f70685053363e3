"""Tests for the ledger writer: balance effects and reversal."""

from decimal import Decimal

import pytest

from app.models.ledger import (
    LedgerDirection,
    LedgerEntry,
    LedgerStatus,
    PaymentProviderName,
    PaymentSource,
)
from app.services.payments import (
    UNRESOLVED,
    AlreadyReversed,
    LedgerWriter,
    PaymentValidationError,
    ResolvedScope,
)
from app.services.payments.notice import PaymentNotice


def _notice(external_id: str, amount: str, direction=LedgerDirection.credit) -> PaymentNotice:
    return PaymentNotice(
        provider=PaymentProviderName.manual,
        source=PaymentSource.cash,
        transaction_id=external_id,
        amount=Decimal(amount),
        raw_reference="ADM001",
        direction=direction,
    )


def test_credit_reduces_balance_and_debit_increases(db_session, tenant, account):
    scope = ResolvedScope(tenant)
    LedgerWriter.commit(db_session, _notice("C1", "2500.00"), scope, account)
    LedgerWriter.commit(
        db_session, _notice("D1", "400.00", LedgerDirection.debit), scope, account
    )
    db_session.refresh(account)
    assert account.balance == Decimal("7900.00")


def test_unmatched_entry_is_pending_without_balance_effect(db_session, tenant, account):
    entry = LedgerWriter.commit(db_session, _notice("S1", "100.00"), UNRESOLVED, None)
    db_session.refresh(account)
    assert entry.status == LedgerStatus.pending
    assert entry.tenant_id is None
    assert entry.scope_key == "global"
    assert account.balance == Decimal("10000.00")


def test_tenant_comes_from_matched_account(db_session, tenant, account):
    entry = LedgerWriter.commit(db_session, _notice("M1", "10.00"), UNRESOLVED, account)
    assert entry.tenant_id == tenant.id
    assert entry.scope_key == f"tenant:{tenant.id}"


def test_reversal_inverts_once(db_session, tenant, account):
    entry = LedgerWriter.commit(db_session, _notice("TX1", "2500.00"), ResolvedScope(tenant), account)
    db_session.refresh(account)
    assert account.balance == Decimal("7500.00")

    reversed_entry = LedgerWriter.reverse(db_session, entry.id, reason="keyed twice")
    db_session.refresh(account)
    assert reversed_entry.status == LedgerStatus.reversed
    assert reversed_entry.reversed_at is not None
    assert reversed_entry.memo == "keyed twice"
    assert account.balance == Decimal("10000.00")

    with pytest.raises(AlreadyReversed):
        LedgerWriter.reverse(db_session, entry.id)
    db_session.refresh(account)
    assert account.balance == Decimal("10000.00")


def test_concurrent_reversal_loser_is_rejected(db_session, session_factory, tenant, account):
    entry = LedgerWriter.commit(db_session, _notice("TX9", "300.00"), ResolvedScope(tenant), account)
    # a second session still holds the entry as completed
    stale = session_factory()
    try:
        stale_entry = stale.get(LedgerEntry, entry.id)
        assert stale_entry.status == LedgerStatus.completed

        LedgerWriter.reverse(db_session, entry.id)
        with pytest.raises(AlreadyReversed):
            LedgerWriter.reverse(stale, stale_entry.id)
    finally:
        stale.close()
    db_session.refresh(account)
    assert account.balance == Decimal("10000.00")


def test_reverse_checks_tenant(db_session, tenant, other_tenant, account):
    entry = LedgerWriter.commit(db_session, _notice("TX3", "50.00"), ResolvedScope(tenant), account)
    with pytest.raises(PaymentValidationError):
        LedgerWriter.reverse(db_session, entry.id, tenant_id=other_tenant.id)


def test_failed_entries_cannot_be_reversed(db_session, tenant, account):
    entry = LedgerWriter.commit(db_session, _notice("TX4", "50.00"), ResolvedScope(tenant), account)
    entry.status = LedgerStatus.failed
    db_session.commit()
    with pytest.raises(PaymentValidationError):
        LedgerWriter.reverse(db_session, entry.id)


def test_balance_invariant_over_mixed_sequence(db_session, tenant, account):
    scope = ResolvedScope(tenant)
    initial = Decimal(account.balance)
    entries = [
        LedgerWriter.commit(db_session, _notice(f"SEQ{i}", amount), scope, account)
        for i, amount in enumerate(["100.00", "250.50", "75.25", "1000.00"])
    ]
    entries.append(
        LedgerWriter.commit(
            db_session, _notice("SEQ-D", "60.00", LedgerDirection.debit), scope, account
        )
    )
    LedgerWriter.reverse(db_session, entries[1].id)
    LedgerWriter.reverse(db_session, entries[4].id)

    db_session.refresh(account)
    live = [
        entry
        for entry in db_session.query(LedgerEntry).filter(LedgerEntry.account_id == account.id)
        if entry.status != LedgerStatus.reversed
    ]
    assert account.balance == initial + sum((entry.balance_delta for entry in live), Decimal("0"))
    assert account.balance == Decimal("8824.75")

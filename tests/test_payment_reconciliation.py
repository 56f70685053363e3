from datetime import date, timedelta

import pytest

from app.config import settings
from app.models.ledger import PaymentProviderName
from app.models.reconciliation import ReconciliationRun, ReconciliationStatus
from app.services.payments import (
    PaymentValidationError,
    ProviderAPIError,
    ResolvedScope,
    TenantNotFound,
)
from app.services.payments.adapters import get_bank_adapter
from app.services.payments.reconciliation import ReconciliationSweeper, window_bounds
from tests.mocks import FakeBankClient

MARCH_1 = date(2026, 3, 1)
MARCH_2 = date(2026, 3, 2)


def bank_row(transaction_id: str, amount: str = "500.00", reference: str = "ADM001", day: int = 1):
    return {
        "transactionReference": transaction_id,
        "amount": amount,
        "accountNumber": reference,
        "senderName": "Mary Njeri",
        "timestamp": f"2026-03-0{day}T10:00:00",
        "creditAccount": "1180123456789",
    }


def ingest_row(db_session, pipeline, tenant, row):
    notice = get_bank_adapter("equity").normalize(row)
    return pipeline.ingest(db_session, notice, ResolvedScope(tenant))


@pytest.fixture()
def sweeper_factory():
    def _make(client):
        return ReconciliationSweeper(clients={PaymentProviderName.equity: client})

    return _make


def test_window_bounds_use_east_africa_days():
    start, end = window_bounds(MARCH_1, MARCH_2)
    assert start.isoformat() == "2026-02-28T21:00:00+00:00"
    assert end.isoformat() == "2026-03-02T21:00:00+00:00"


def test_reports_gaps_on_both_sides(
    db_session, pipeline, tenant, account, equity_integration, sweeper_factory
):
    ingest_row(db_session, pipeline, tenant, bank_row("EQ-BOTH"))
    ingest_row(db_session, pipeline, tenant, bank_row("EQ-LEDGER-ONLY", day=2))
    client = FakeBankClient(
        {
            MARCH_1: [bank_row("EQ-BOTH"), bank_row("EQ-GAP", amount="750.00")],
            MARCH_2: [bank_row("EQ-GAP", amount="750.00", day=2)],
        }
    )

    result = sweeper_factory(client).reconcile(
        db_session, tenant, PaymentProviderName.equity, MARCH_1, MARCH_2
    )

    assert client.calls == [(MARCH_1, MARCH_1), (MARCH_2, MARCH_2)]
    assert result["status"] == "completed"
    assert result["bank_side_count"] == 2
    assert result["ledger_side_count"] == 2
    assert [gap["transaction_id"] for gap in result["missing_from_ledger"]] == ["EQ-GAP"]
    gap = result["missing_from_ledger"][0]
    assert gap["amount"] == "750.00"
    assert gap["reference"] == "ADM001"
    assert gap["payload"]["transactionReference"] == "EQ-GAP"
    assert result["missing_from_provider"] == ["EQ-LEDGER-ONLY"]

    db_session.refresh(equity_integration)
    assert equity_integration.last_sync_at is not None


def test_gap_row_can_be_replayed(
    db_session, pipeline, tenant, account, equity_integration, sweeper_factory
):
    client = FakeBankClient({MARCH_1: [bank_row("EQ-GAP")]})
    sweeper = sweeper_factory(client)
    first = sweeper.reconcile(db_session, tenant, "equity", MARCH_1, MARCH_1)
    payload = first["missing_from_ledger"][0]["payload"]

    pipeline.replay(db_session, "equity", payload, tenant=tenant)
    second = sweeper.reconcile(db_session, tenant, "equity", MARCH_1, MARCH_1)

    assert second["missing_from_ledger"] == []
    assert second["missing_from_provider"] == []


def test_ledger_entries_of_other_tenants_are_ignored(
    db_session, pipeline, tenant, other_tenant, account, equity_integration, sweeper_factory
):
    ingest_row(db_session, pipeline, other_tenant, bank_row("EQ-ELSEWHERE", reference="X"))
    result = sweeper_factory(FakeBankClient()).reconcile(
        db_session, tenant, "equity", MARCH_1, MARCH_1
    )
    assert result["missing_from_provider"] == []


class CancellingClient(FakeBankClient):
    """Requests cancellation while the first day is being fetched."""

    def fetch_transactions(self, db, integration, from_date, to_date):
        rows = super().fetch_transactions(db, integration, from_date, to_date)
        run = db.query(ReconciliationRun).one()
        run.status = ReconciliationStatus.cancel_requested
        db.commit()
        return rows


def test_cancel_between_days(db_session, tenant, equity_integration, sweeper_factory):
    client = CancellingClient({MARCH_1: [bank_row("EQ-1")]})
    sweeper = sweeper_factory(client)
    run = sweeper.start(db_session, tenant, "equity", MARCH_1, MARCH_2)

    finished = sweeper.run(db_session, run.id)

    assert finished.status == ReconciliationStatus.cancelled
    assert finished.finished_at is not None
    assert client.calls == [(MARCH_1, MARCH_1)]


def test_request_cancel_only_flags_running_runs(db_session, tenant, equity_integration, sweeper_factory):
    sweeper = sweeper_factory(FakeBankClient())
    run = sweeper.start(db_session, tenant, "equity", MARCH_1, MARCH_1)
    flagged = ReconciliationSweeper.request_cancel(db_session, run.id, tenant_id=tenant.id)
    assert flagged.status == ReconciliationStatus.cancel_requested

    # a flagged run is not executed
    assert sweeper.run(db_session, run.id).status == ReconciliationStatus.cancel_requested


def test_request_cancel_checks_tenant(db_session, tenant, other_tenant, equity_integration, sweeper_factory):
    run = sweeper_factory(FakeBankClient()).start(db_session, tenant, "equity", MARCH_1, MARCH_1)
    with pytest.raises(PaymentValidationError):
        ReconciliationSweeper.request_cancel(db_session, run.id, tenant_id=other_tenant.id)


def test_provider_failure_marks_run_failed(db_session, tenant, equity_integration, sweeper_factory):
    client = FakeBankClient(error=ProviderAPIError("equity", "fetch_transactions failed: HTTP 503"))
    sweeper = sweeper_factory(client)
    run = sweeper.start(db_session, tenant, "equity", MARCH_1, MARCH_1)

    with pytest.raises(ProviderAPIError):
        sweeper.run(db_session, run.id)

    db_session.refresh(run)
    assert run.status == ReconciliationStatus.failed
    assert "HTTP 503" in run.error


def test_window_validation(db_session, tenant, equity_integration, sweeper_factory):
    sweeper = sweeper_factory(FakeBankClient())
    with pytest.raises(PaymentValidationError):
        sweeper.start(db_session, tenant, "equity", MARCH_2, MARCH_1)
    with pytest.raises(PaymentValidationError):
        sweeper.start(
            db_session,
            tenant,
            "equity",
            MARCH_1,
            MARCH_1 + timedelta(days=settings.reconciliation_max_days),
        )


def test_start_requires_enabled_integration(db_session, tenant, sweeper_factory):
    with pytest.raises(TenantNotFound):
        sweeper_factory(FakeBankClient()).start(db_session, tenant, "equity", MARCH_1, MARCH_1)


def test_mobile_money_has_no_statement_client():
    with pytest.raises(PaymentValidationError):
        ReconciliationSweeper().client_for(PaymentProviderName.mpesa)

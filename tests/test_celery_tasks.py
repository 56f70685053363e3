"""Tests for Celery tasks."""

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from app.config import settings
from app.models.ledger import PaymentProviderName
from app.models.reconciliation import ReconciliationRun, ReconciliationStatus
from app.models.tenant import BankProvider
from app.schemas.payments import ManualTransactionCreate
from app.services import payments as payments_service
from app.services.payments import ProviderAPIError
from app.services.payments.reconciliation import ReconciliationSweeper
from app.tasks.reconciliation import lookback_window
from tests.factories import make_integration
from tests.mocks import FakeBankClient

# =============================================================================
# Reconciliation Task Tests
# =============================================================================


class TestLookbackWindow:
    def test_defaults_to_yesterday(self):
        assert lookback_window(date(2026, 3, 10)) == (date(2026, 3, 9), date(2026, 3, 9))

    def test_longer_lookback(self, monkeypatch):
        monkeypatch.setattr(
            "app.tasks.reconciliation.settings",
            settings.model_copy(update={"reconciliation_lookback_days": 3}),
        )
        assert lookback_window(date(2026, 3, 10)) == (date(2026, 3, 7), date(2026, 3, 9))


class TestReconcileIntegrationTask:
    def test_reconcile_integration_success(self):
        mock_session = MagicMock()
        run = MagicMock(id="run-1", status=ReconciliationStatus.completed)

        with patch("app.tasks.reconciliation.SessionLocal", return_value=mock_session):
            with patch(
                "app.tasks.reconciliation.reconciliation_sweeper.run", return_value=run
            ) as mock_run:
                from app.tasks.reconciliation import reconcile_integration

                result = reconcile_integration("run-1")

                mock_run.assert_called_once_with(mock_session, "run-1")
                mock_session.close.assert_called_once()
                assert result == {"run_id": "run-1", "status": "completed"}

    def test_reconcile_integration_exception_rollback(self):
        mock_session = MagicMock()

        with patch("app.tasks.reconciliation.SessionLocal", return_value=mock_session):
            with patch(
                "app.tasks.reconciliation.reconciliation_sweeper.run",
                side_effect=Exception("Bank down"),
            ):
                from app.tasks.reconciliation import reconcile_integration

                with pytest.raises(Exception, match="Bank down"):
                    reconcile_integration("run-1")

                mock_session.rollback.assert_called_once()
                mock_session.close.assert_called_once()


class TestSweepBankIntegrations:
    def test_sweeps_every_enabled_integration_and_survives_failures(
        self, db_session, tenant, other_tenant, equity_integration
    ):
        make_integration(db_session, other_tenant, BankProvider.kcb, "KCB-ACC-9")
        make_integration(db_session, tenant, BankProvider.coop, "COOP-OFF", is_enabled=False)
        sweeper = ReconciliationSweeper(
            clients={
                PaymentProviderName.equity: FakeBankClient(),
                PaymentProviderName.kcb: FakeBankClient(
                    error=ProviderAPIError("kcb", "fetch_transactions failed: HTTP 500")
                ),
            }
        )

        with patch("app.tasks.reconciliation.SessionLocal", return_value=db_session):
            with patch("app.tasks.reconciliation.reconciliation_sweeper", sweeper):
                from app.tasks.reconciliation import sweep_bank_integrations

                summary = sweep_bank_integrations()

        assert summary == {"started": 2, "completed": 1, "failed": 1}
        statuses = {run.provider: run.status for run in db_session.query(ReconciliationRun)}
        assert statuses == {
            "equity": ReconciliationStatus.completed,
            "kcb": ReconciliationStatus.failed,
        }

    def test_inactive_tenants_are_skipped(self, db_session, tenant, equity_integration):
        tenant.is_active = False
        db_session.commit()

        with patch("app.tasks.reconciliation.SessionLocal", return_value=db_session):
            from app.tasks.reconciliation import sweep_bank_integrations

            summary = sweep_bank_integrations()

        assert summary == {"started": 0, "completed": 0, "failed": 0}


# =============================================================================
# Receipt Task Tests
# =============================================================================


class TestPaymentReceiptTask:
    def test_send_payment_receipt_exception_closes_session(self):
        mock_session = MagicMock()

        with patch("app.tasks.notifications.SessionLocal", return_value=mock_session):
            with patch(
                "app.tasks.notifications._send_payment_receipt",
                side_effect=Exception("SMS error"),
            ):
                from app.tasks.notifications import send_payment_receipt

                with pytest.raises(Exception, match="SMS error"):
                    send_payment_receipt("entry-1")

                mock_session.rollback.assert_called_once()
                mock_session.close.assert_called_once()

    def test_matched_entry_sends_receipt(self, db_session, pipeline, tenant, account):
        outcome = pipeline.ingest_mpesa(
            db_session,
            {"TransID": "RCP1", "TransAmount": "500", "BillRefNumber": "ADM001"},
        )
        with patch(
            "app.tasks.notifications.sms_service.send_receipt",
            return_value=(True, "ATXid_9", None),
        ) as send:
            from app.tasks.notifications import _send_payment_receipt

            assert _send_payment_receipt(db_session, str(outcome.entry.id)) is True

        sent_entry, sent_account = send.call_args.args
        assert sent_account.id == account.id
        assert sent_account.balance == Decimal("9500.00")
        assert sent_entry.external_id == "RCP1"

    def test_suspense_entry_is_skipped(self, db_session, pipeline):
        outcome = pipeline.ingest_mpesa(
            db_session,
            {"TransID": "RCP2", "TransAmount": "500", "BillRefNumber": "NOBODY"},
        )
        with patch("app.tasks.notifications.sms_service.send_receipt") as send:
            from app.tasks.notifications import _send_payment_receipt

            assert _send_payment_receipt(db_session, str(outcome.entry.id)) is False
        send.assert_not_called()

    def test_tenant_opt_out_is_respected(self, db_session, pipeline, tenant, account):
        tenant.sms_receipts = False
        db_session.commit()
        outcome = pipeline.ingest_mpesa(
            db_session,
            {"TransID": "RCP3", "TransAmount": "500", "BillRefNumber": "ADM001"},
        )
        with patch("app.tasks.notifications.sms_service.send_receipt") as send:
            from app.tasks.notifications import _send_payment_receipt

            assert _send_payment_receipt(db_session, str(outcome.entry.id)) is False
        send.assert_not_called()

    def test_charge_entry_is_skipped(self, db_session, pipeline, tenant, account):
        entry, _ = payments_service.manual_payments.record_transaction(
            db_session,
            tenant,
            ManualTransactionCreate(reference="ADM001", amount="900", direction="debit"),
        )
        with patch("app.tasks.notifications.sms_service.send_receipt") as send:
            from app.tasks.notifications import _send_payment_receipt

            assert _send_payment_receipt(db_session, str(entry.id)) is False
        send.assert_not_called()


def test_beat_schedule_registered():
    from app.celery_app import celery_app

    assert "bank_reconciliation_sweep" in celery_app.conf.beat_schedule
    assert celery_app.conf.task_acks_late is True
    assert celery_app.conf.beat_max_loop_interval > 0

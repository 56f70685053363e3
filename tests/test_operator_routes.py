"""Operator API: manual recording, ledger access, reconciliation, registration."""

from decimal import Decimal
from unittest.mock import patch

import pytest

from app.models.ledger import LedgerEntry
from app.models.reconciliation import ReconciliationRun, ReconciliationStatus
from app.models.tenant import SubscriptionStatus
from tests.factories import OPERATOR_KEY, OTHER_OPERATOR_KEY, PLATFORM_KEY, make_account
from tests.mocks import FakeHTTPXResponse, FakeProviderAPI

TENANT_HEADERS = {"X-API-Key": OPERATOR_KEY}
OTHER_HEADERS = {"X-API-Key": OTHER_OPERATOR_KEY}
PLATFORM_HEADERS = {"X-API-Key": PLATFORM_KEY}


def record_cash(client, headers=TENANT_HEADERS, **overrides):
    payload = {"reference": "ADM001", "amount": "1000.00"}
    payload.update(overrides)
    return client.post("/api/payments/cash", json=payload, headers=headers)


class TestAuthentication:
    def test_missing_key(self, client, tenant):
        resp = record_cash(client, headers={})
        assert resp.status_code == 401
        assert resp.json()["code"] == "http_401"

    def test_wrong_key(self, client, tenant):
        resp = record_cash(client, headers={"X-API-Key": "nope"})
        assert resp.status_code == 401

    def test_non_ascii_key_is_401(self, client, tenant):
        resp = record_cash(client, headers={"X-API-Key": "é".encode("utf-8")})
        assert resp.status_code == 401
        assert resp.json()["code"] == "http_401"

    def test_inactive_tenant(self, client, db_session, tenant, account):
        tenant.is_active = False
        db_session.commit()
        assert record_cash(client).status_code == 403

    def test_lapsed_subscription(self, client, db_session, tenant, account):
        tenant.subscription_status = SubscriptionStatus.suspended
        db_session.commit()
        assert record_cash(client).status_code == 403

    def test_platform_key_needs_tenant_code_for_tenant_actions(self, client, tenant, account):
        assert record_cash(client, headers=PLATFORM_HEADERS).status_code == 400
        resp = record_cash(client, headers={**PLATFORM_HEADERS, "X-Tenant-Code": "SCH001"})
        assert resp.status_code == 201

    def test_platform_key_unknown_tenant_code(self, client, tenant):
        resp = record_cash(client, headers={**PLATFORM_HEADERS, "X-Tenant-Code": "NOPE"})
        assert resp.status_code == 404


class TestManualPayments:
    def test_cash_created_then_duplicate(self, client, db_session, account):
        first = record_cash(client, receipt_number="RCPT-77")
        second = record_cash(client, receipt_number="RCPT-77")

        assert first.status_code == 201
        assert first.json()["status"] == "completed"
        assert first.json()["external_id"] == "RCPT-77"
        assert second.status_code == 200
        assert second.json()["id"] == first.json()["id"]
        db_session.refresh(account)
        assert account.balance == Decimal("9000.00")

    def test_unknown_reference_is_404_and_writes_nothing(self, client, db_session, account):
        resp = record_cash(client, reference="UNKNOWN01", amount="500")
        assert resp.status_code == 404
        assert "Account not found" in resp.json()["message"]
        assert db_session.query(LedgerEntry).count() == 0

    def test_invalid_amount_is_422(self, client, account):
        resp = record_cash(client, amount="-5")
        assert resp.status_code == 422
        assert resp.json()["code"] == "validation_error"

    def test_amount_rounding_to_zero_is_422(self, client, db_session, account):
        resp = record_cash(client, amount="0.001")
        assert resp.status_code == 422
        assert resp.json()["code"] == "validation_error"
        assert db_session.query(LedgerEntry).count() == 0

    def test_sub_cent_amount_is_rounded(self, client, account):
        resp = record_cash(client, amount="0.005")
        assert resp.status_code == 201
        assert Decimal(resp.json()["amount"]) == Decimal("0.01")

    def test_bank_payment(self, client, account):
        resp = client.post(
            "/api/payments/bank",
            json={
                "reference": "ADM001",
                "amount": "2500",
                "transaction_id": "FT-123",
                "source": "bank_agent",
            },
            headers=TENANT_HEADERS,
        )
        assert resp.status_code == 201
        assert resp.json()["source"] == "bank_agent"

    def test_stats(self, client, account):
        record_cash(client, amount="100")
        record_cash(client, amount="250")
        resp = client.get("/api/payments/stats", headers=TENANT_HEADERS)
        assert resp.status_code == 200
        body = resp.json()
        assert body["total_count"] == 2
        assert Decimal(body["total_amount"]) == Decimal("350.00")


class TestTransactions:
    def test_tenant_sees_only_own_entries(self, client, db_session, account, other_tenant):
        make_account(db_session, other_tenant, "ADM001")
        record_cash(client)
        record_cash(client, headers=OTHER_HEADERS)

        mine = client.get("/api/transactions", headers=TENANT_HEADERS).json()
        everything = client.get("/api/transactions", headers=PLATFORM_HEADERS).json()

        assert mine["count"] == 1
        assert mine["items"][0]["tenant_id"] == str(account.tenant_id)
        assert everything["count"] == 2

    def test_suspense_filter(self, client, pipeline, db_session, account):
        pipeline.ingest_mpesa(
            db_session,
            {"TransID": "S1", "TransAmount": "10", "BillRefNumber": "NOBODY"},
        )
        record_cash(client)
        resp = client.get(
            "/api/transactions", params={"suspense_only": "true"}, headers=PLATFORM_HEADERS
        )
        items = resp.json()["items"]
        assert [item["external_id"] for item in items] == ["S1"]

    def test_count_is_total_not_page_size(self, client, account):
        for amount in ("100", "200", "300"):
            record_cash(client, amount=amount)
        resp = client.get(
            "/api/transactions",
            params={"limit": 2, "order_by": "amount", "order_dir": "asc"},
            headers=TENANT_HEADERS,
        )
        body = resp.json()
        assert body["count"] == 3
        assert [Decimal(item["amount"]) for item in body["items"]] == [
            Decimal("100.00"),
            Decimal("200.00"),
        ]

    def test_invalid_order_by_is_400(self, client, tenant):
        resp = client.get(
            "/api/transactions", params={"order_by": "payer_phone"}, headers=TENANT_HEADERS
        )
        assert resp.status_code == 400
        assert "Allowed" in resp.json()["message"]

    def test_invalid_filter_is_400(self, client, tenant):
        resp = client.get("/api/transactions", params={"status": "bogus"}, headers=TENANT_HEADERS)
        assert resp.status_code == 400

    def test_other_tenant_entry_is_404(self, client, account, other_tenant):
        entry_id = record_cash(client).json()["id"]
        assert client.get(f"/api/transactions/{entry_id}", headers=TENANT_HEADERS).status_code == 200
        assert client.get(f"/api/transactions/{entry_id}", headers=OTHER_HEADERS).status_code == 404

    def test_reverse_once(self, client, db_session, account):
        entry_id = record_cash(client).json()["id"]

        first = client.post(
            f"/api/transactions/{entry_id}/reverse",
            json={"reason": "wrong student"},
            headers=TENANT_HEADERS,
        )
        second = client.post(f"/api/transactions/{entry_id}/reverse", headers=TENANT_HEADERS)

        assert first.status_code == 200
        assert first.json()["status"] == "reversed"
        assert second.status_code == 400
        db_session.refresh(account)
        assert account.balance == Decimal("10000.00")

    def test_charge_raises_balance_and_reversal_restores_it(self, client, db_session, account):
        resp = client.post(
            "/api/transactions",
            json={
                "reference": "ADM001",
                "amount": "1500",
                "direction": "debit",
                "memo": "Term 2 fees",
            },
            headers=TENANT_HEADERS,
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["direction"] == "debit"
        assert body["external_id"].startswith("TXN-")
        db_session.refresh(account)
        assert account.balance == Decimal("11500.00")

        reversed_resp = client.post(
            f"/api/transactions/{body['id']}/reverse", headers=TENANT_HEADERS
        )
        assert reversed_resp.status_code == 200
        db_session.refresh(account)
        assert account.balance == Decimal("10000.00")

    def test_charge_with_same_transaction_id_is_200(self, client, db_session, account):
        payload = {
            "reference": "ADM001",
            "amount": "300",
            "direction": "debit",
            "transaction_id": "FINE-12",
        }
        first = client.post("/api/transactions", json=payload, headers=TENANT_HEADERS)
        second = client.post("/api/transactions", json=payload, headers=TENANT_HEADERS)

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["id"] == first.json()["id"]
        db_session.refresh(account)
        assert account.balance == Decimal("10300.00")

    def test_charge_unknown_reference_is_404(self, client, db_session, account):
        resp = client.post(
            "/api/transactions",
            json={"reference": "NOPE99", "amount": "300", "direction": "debit"},
            headers=TENANT_HEADERS,
        )
        assert resp.status_code == 404
        assert db_session.query(LedgerEntry).count() == 0

    def test_charge_needs_a_tenant(self, client, account):
        payload = {"reference": "ADM001", "amount": "300", "direction": "debit"}
        resp = client.post("/api/transactions", json=payload, headers=PLATFORM_HEADERS)
        assert resp.status_code == 400
        resp = client.post(
            "/api/transactions",
            json=payload,
            headers={**PLATFORM_HEADERS, "X-Tenant-Code": "SCH001"},
        )
        assert resp.status_code == 201


class TestReconciliationRoutes:
    @pytest.fixture()
    def run_payload(self):
        return {"provider": "equity", "from_date": "2026-03-01", "to_date": "2026-03-02"}

    def test_start_run_queues_task(
        self, client, db_session, equity_integration, run_payload, other_tenant
    ):
        with patch("app.api.reconciliation.reconcile_integration") as task:
            resp = client.post("/api/reconciliation/runs", json=run_payload, headers=TENANT_HEADERS)

        assert resp.status_code == 202
        body = resp.json()
        assert body["status"] == "running"
        task.delay.assert_called_once_with(body["id"])

        fetched = client.get(f"/api/reconciliation/runs/{body['id']}", headers=TENANT_HEADERS)
        assert fetched.status_code == 200
        hidden = client.get(f"/api/reconciliation/runs/{body['id']}", headers=OTHER_HEADERS)
        assert hidden.status_code == 404

    def test_cancel_run(self, client, db_session, equity_integration, run_payload):
        with patch("app.api.reconciliation.reconcile_integration"):
            run_id = client.post(
                "/api/reconciliation/runs", json=run_payload, headers=TENANT_HEADERS
            ).json()["id"]
        resp = client.post(f"/api/reconciliation/runs/{run_id}/cancel", headers=TENANT_HEADERS)
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancel_requested"
        run = db_session.query(ReconciliationRun).one()
        assert run.status == ReconciliationStatus.cancel_requested

    def test_mobile_money_window_rejected(self, client, equity_integration):
        resp = client.post(
            "/api/reconciliation/runs",
            json={"provider": "mpesa", "from_date": "2026-03-01", "to_date": "2026-03-01"},
            headers=TENANT_HEADERS,
        )
        assert resp.status_code == 422

    def test_run_without_integration_is_404(self, client, tenant, run_payload):
        with patch("app.api.reconciliation.reconcile_integration") as task:
            resp = client.post("/api/reconciliation/runs", json=run_payload, headers=TENANT_HEADERS)
        assert resp.status_code == 404
        task.delay.assert_not_called()

    def test_replay_then_already_processed(self, client, account):
        payload = {
            "provider": "equity",
            "payload": {
                "transactionReference": "EQ-GAP-9",
                "amount": "300",
                "accountNumber": "ADM001",
            },
        }
        first = client.post("/api/reconciliation/replay", json=payload, headers=TENANT_HEADERS)
        second = client.post("/api/reconciliation/replay", json=payload, headers=TENANT_HEADERS)

        assert first.json()["outcome"] == "matched"
        assert second.json()["outcome"] == "duplicate"
        assert second.json()["message"] == "Already processed"
        assert second.json()["entry_id"] == first.json()["entry_id"]

    def test_replay_malformed_payload(self, client, account):
        resp = client.post(
            "/api/reconciliation/replay",
            json={"provider": "equity", "payload": {"amount": "300"}},
            headers=TENANT_HEADERS,
        )
        assert resp.status_code == 400


class TestRegistration:
    def test_register_bank_webhook(self, client, db_session, equity_integration, monkeypatch):
        api = FakeProviderAPI(
            {
                "/identity/v2/token": FakeHTTPXResponse({"access_token": "abc", "expires_in": 3600}),
                "/webhooks/subscribe": FakeHTTPXResponse({"status": "subscribed"}),
            }
        )
        monkeypatch.setattr("httpx.request", api)
        callback = "https://pay.example.com/api/webhooks/bank/equity"

        resp = client.post(
            "/api/integrations/equity/register-webhook",
            json={"callback_url": callback},
            headers=TENANT_HEADERS,
        )

        assert resp.status_code == 200
        db_session.refresh(equity_integration)
        assert equity_integration.callback_url == callback

    def test_register_webhook_provider_errors(self, client, tenant, monkeypatch):
        monkeypatch.setattr(
            "httpx.request",
            FakeProviderAPI({"/identity/v2/token": FakeHTTPXResponse(status_code=500)}),
        )
        payload = {"callback_url": "https://pay.example.com/hook"}
        assert (
            client.post(
                "/api/integrations/mpesa/register-webhook", json=payload, headers=TENANT_HEADERS
            ).status_code
            == 400
        )
        assert (
            client.post(
                "/api/integrations/kcb/register-webhook", json=payload, headers=TENANT_HEADERS
            ).status_code
            == 404
        )

    def test_bank_api_failure_is_502(self, client, equity_integration, monkeypatch):
        monkeypatch.setattr(
            "httpx.request",
            FakeProviderAPI({"/identity/v2/token": FakeHTTPXResponse(status_code=500)}),
        )
        resp = client.post(
            "/api/integrations/equity/register-webhook",
            json={"callback_url": "https://pay.example.com/hook"},
            headers=TENANT_HEADERS,
        )
        assert resp.status_code == 502

    def test_mpesa_registration_is_platform_only(self, client, tenant):
        resp = client.post(
            "/api/mpesa/register",
            json={
                "confirmation_url": "https://pay.example.com/c",
                "validation_url": "https://pay.example.com/v",
            },
            headers=TENANT_HEADERS,
        )
        assert resp.status_code == 403


def test_health_and_metrics(client):
    assert client.get("/health").json() == {"status": "ok"}
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "payment_notices_total" in metrics.text

"""KCB Bank adapter and client."""

from __future__ import annotations

from datetime import date
from typing import Any, Mapping

from app.config import settings
from app.models.ledger import PaymentProviderName, PaymentSource
from app.models.tenant import TenantIntegration
from app.services.payments.adapters.base import (
    ProviderAdapter,
    join_name,
    normalize_phone,
)
from app.services.payments.bank_api import BankAPIClient


class KCBAdapter(ProviderAdapter):
    provider = PaymentProviderName.kcb
    source = PaymentSource.bank_transfer
    transaction_field = "transaction_reference"
    amount_field = "transaction_amount"
    reference_field = "account_reference"
    phone_field = "sender_phone"
    time_field = "transaction_date"
    routing_field = "account_number"
    signature_header = "X-KCB-Signature"
    # KCB signs with base64 rather than hex
    signature_encoding = "base64"

    def extract_payer(self, payload: Mapping[str, Any]) -> tuple[str | None, str | None]:
        return join_name(payload.get("sender_name")), normalize_phone(
            payload.get(self.phone_field)
        )


class KCBClient(BankAPIClient):
    provider = PaymentProviderName.kcb
    statement_key = "transactions"

    @property
    def base_url(self) -> str:
        return settings.kcb_api_url

    def request_token(self, integration: TenantIntegration) -> tuple[str, int]:
        creds = self.credentials(integration)
        response = self._send(
            "POST",
            "/v1/token",
            "request_token",
            json={
                "grant_type": "client_credentials",
                "client_id": creds["api_key"],
                "client_secret": creds["api_secret"],
            },
        )
        return self._token_response(response)

    def statement_request(
        self, integration: TenantIntegration, from_date: date, to_date: date
    ) -> tuple[str, str, dict[str, Any]]:
        return (
            "GET",
            f"/v1/accounts/{integration.routing_identifier}/transactions",
            {
                "params": {
                    "from_date": from_date.isoformat(),
                    "to_date": to_date.isoformat(),
                }
            },
        )

    def webhook_request(
        self, integration: TenantIntegration, callback_url: str
    ) -> tuple[str, dict[str, Any]]:
        return (
            "/v1/webhooks",
            {
                "account_number": integration.routing_identifier,
                "callback_url": callback_url,
                "event_types": ["credit"],
            },
        )

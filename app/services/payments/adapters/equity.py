"""Equity Bank (Jenga API) adapter and client."""

from __future__ import annotations

import base64
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


class EquityAdapter(ProviderAdapter):
    provider = PaymentProviderName.equity
    source = PaymentSource.bank_transfer
    transaction_field = "transactionReference"
    amount_field = "amount"
    # accountNumber carries the payer-entered student reference
    reference_field = "accountNumber"
    phone_field = "senderMobile"
    time_field = "timestamp"
    routing_field = "creditAccount"
    signature_header = "X-Equity-Signature"
    signature_encoding = "hex"

    def extract_payer(self, payload: Mapping[str, Any]) -> tuple[str | None, str | None]:
        return join_name(payload.get("senderName")), normalize_phone(
            payload.get(self.phone_field)
        )


class EquityClient(BankAPIClient):
    provider = PaymentProviderName.equity
    statement_key = "transactions"

    @property
    def base_url(self) -> str:
        return settings.equity_api_url

    def request_token(self, integration: TenantIntegration) -> tuple[str, int]:
        creds = self.credentials(integration)
        basic = base64.b64encode(
            f"{creds['consumer_key']}:{creds['consumer_secret']}".encode()
        ).decode("ascii")
        response = self._send(
            "POST",
            "/identity/v2/token",
            "request_token",
            content="grant_type=client_credentials",
            headers={
                "Authorization": f"Basic {basic}",
                "Content-Type": "application/x-www-form-urlencoded",
            },
        )
        return self._token_response(response)

    def statement_request(
        self, integration: TenantIntegration, from_date: date, to_date: date
    ) -> tuple[str, str, dict[str, Any]]:
        return (
            "POST",
            "/transaction/v2/accounts/transactions/query",
            {
                "json": {
                    "accountNumber": integration.routing_identifier,
                    "fromDate": from_date.isoformat(),
                    "toDate": to_date.isoformat(),
                }
            },
        )

    def webhook_request(
        self, integration: TenantIntegration, callback_url: str
    ) -> tuple[str, dict[str, Any]]:
        return (
            "/transaction/v2/webhooks/subscribe",
            {
                "accountNumber": integration.routing_identifier,
                "callbackUrl": callback_url,
                "eventType": "CREDIT",
            },
        )

"""Co-operative Bank adapter and client."""

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


class CoopAdapter(ProviderAdapter):
    provider = PaymentProviderName.coop
    source = PaymentSource.bank_transfer
    transaction_field = "TransactionID"
    amount_field = "TransAmount"
    reference_field = "BillRefNumber"
    phone_field = "MSISDN"
    time_field = "TransTime"
    routing_field = "AccountNumber"
    signature_header = "X-Coop-Signature"

    def extract_payer(self, payload: Mapping[str, Any]) -> tuple[str | None, str | None]:
        return join_name(payload.get("SenderName")), normalize_phone(
            payload.get(self.phone_field)
        )


class CoopClient(BankAPIClient):
    provider = PaymentProviderName.coop
    statement_key = "Transactions"

    @property
    def base_url(self) -> str:
        return settings.coop_api_url

    def request_token(self, integration: TenantIntegration) -> tuple[str, int]:
        creds = self.credentials(integration)
        basic = base64.b64encode(
            f"{creds['consumer_key']}:{creds['consumer_secret']}".encode()
        ).decode("ascii")
        response = self._send(
            "POST",
            "/token",
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
            "/AccountBalance/1.0.0/AccountMiniStatement",
            {
                "json": {
                    "AccountNumber": integration.routing_identifier,
                    "StartDate": from_date.isoformat(),
                    "EndDate": to_date.isoformat(),
                }
            },
        )

    def webhook_request(
        self, integration: TenantIntegration, callback_url: str
    ) -> tuple[str, dict[str, Any]]:
        return (
            "/Notifications/Subscribe",
            {
                "AccountNumber": integration.routing_identifier,
                "CallbackUrl": callback_url,
                "NotificationType": "CREDIT",
            },
        )

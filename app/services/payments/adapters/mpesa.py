"""M-PESA Daraja C2B adapter and URL registration client."""

from __future__ import annotations

import base64
import logging
from typing import Any, Mapping

import httpx
from sqlalchemy.orm import Session

from app.config import settings
from app.models.ledger import GLOBAL_SCOPE_KEY, PaymentProviderName, PaymentSource
from app.services.common import secure_compare
from app.services.payments.adapters.base import (
    ProviderAdapter,
    join_name,
    normalize_phone,
)
from app.services.payments.errors import ProviderAPIError
from app.services.payments.tokens import TokenStore

logger = logging.getLogger(__name__)


class MpesaAdapter(ProviderAdapter):
    """Paybill confirmations; the shared paybill carries no tenant identity.

    Daraja does not sign C2B callbacks, so authenticity is an optional shared
    token embedded in the registered confirmation URL.
    """

    provider = PaymentProviderName.mpesa
    source = PaymentSource.mpesa
    transaction_field = "TransID"
    amount_field = "TransAmount"
    reference_field = "BillRefNumber"
    phone_field = "MSISDN"
    time_field = "TransTime"
    routing_field = "BusinessShortCode"

    def extract_payer(self, payload: Mapping[str, Any]) -> tuple[str | None, str | None]:
        name = join_name(
            payload.get("FirstName"), payload.get("MiddleName"), payload.get("LastName")
        )
        return name, normalize_phone(payload.get(self.phone_field))

    @staticmethod
    def verify_callback_token(token: str | None) -> bool:
        expected = settings.mpesa_callback_token
        if not expected:
            return True
        if not token:
            return False
        return secure_compare(expected, token)


class MpesaClient:
    def __init__(self, token_store: TokenStore):
        self.token_store = token_store

    def request_token(self) -> tuple[str, int]:
        if not settings.mpesa_consumer_key or not settings.mpesa_consumer_secret:
            raise ProviderAPIError("mpesa", "consumer key/secret not configured")
        basic = base64.b64encode(
            f"{settings.mpesa_consumer_key}:{settings.mpesa_consumer_secret}".encode()
        ).decode("ascii")
        try:
            response = httpx.get(
                f"{settings.mpesa_api_url}/oauth/v1/generate",
                params={"grant_type": "client_credentials"},
                headers={"Authorization": f"Basic {basic}"},
                timeout=settings.provider_http_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("provider_api_error provider=mpesa action=request_token error=%s", exc)
            raise ProviderAPIError("mpesa", "request_token failed") from exc
        data = response.json()
        return data["access_token"], int(data.get("expires_in") or 3599)

    def register_urls(
        self, db: Session, confirmation_url: str, validation_url: str
    ) -> dict[str, Any]:
        """Register the paybill's C2B callback URLs with Daraja."""
        if not settings.mpesa_shortcode:
            raise ProviderAPIError("mpesa", "MPESA_SHORTCODE not configured")
        token = self.token_store.get_token(
            db, GLOBAL_SCOPE_KEY, PaymentProviderName.mpesa.value, self.request_token
        )
        try:
            response = httpx.post(
                f"{settings.mpesa_api_url}/mpesa/c2b/v1/registerurl",
                json={
                    "ShortCode": settings.mpesa_shortcode,
                    "ResponseType": "Completed",
                    "ConfirmationURL": confirmation_url,
                    "ValidationURL": validation_url,
                },
                headers={"Authorization": f"Bearer {token}"},
                timeout=settings.provider_http_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("provider_api_error provider=mpesa action=register_urls error=%s", exc)
            raise ProviderAPIError("mpesa", "register_urls failed") from exc
        logger.info("mpesa_urls_registered shortcode=%s", settings.mpesa_shortcode)
        return response.json()

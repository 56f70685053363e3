"""Outbound HTTP calls to provider APIs (tokens, statements, webhook registration)."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Any

import httpx
from sqlalchemy.orm import Session

from app.config import settings
from app.models.ledger import PaymentProviderName, scope_key_for
from app.models.tenant import TenantIntegration
from app.services.credential_crypto import decrypt_credential
from app.services.payments.errors import ProviderAPIError
from app.services.payments.tokens import TokenStore

logger = logging.getLogger(__name__)


def _raise_for_provider(provider: str, action: str, exc: httpx.HTTPError) -> None:
    detail = str(exc)
    if isinstance(exc, httpx.HTTPStatusError):
        detail = f"HTTP {exc.response.status_code}"
    logger.error("provider_api_error provider=%s action=%s error=%s", provider, action, detail)
    raise ProviderAPIError(provider, f"{action} failed: {detail}") from exc


class BankAPIClient(ABC):
    """Base class for the per-bank API clients.

    Tokens come from the shared :class:`TokenStore`, keyed by tenant, so two
    tenants integrated with the same bank never share a bearer token.
    """

    provider: PaymentProviderName
    statement_key: str = "transactions"

    def __init__(self, token_store: TokenStore):
        self.token_store = token_store

    @property
    @abstractmethod
    def base_url(self) -> str:
        ...

    @staticmethod
    def credentials(integration: TenantIntegration) -> dict[str, str | None]:
        return {
            "api_key": decrypt_credential(integration.api_key),
            "api_secret": decrypt_credential(integration.api_secret),
            "consumer_key": decrypt_credential(integration.consumer_key),
            "consumer_secret": decrypt_credential(integration.consumer_secret),
            "account_number": integration.routing_identifier,
        }

    @abstractmethod
    def request_token(self, integration: TenantIntegration) -> tuple[str, int]:
        """Fetch a fresh bearer token; returns ``(token, expires_in)``."""

    def access_token(self, db: Session, integration: TenantIntegration) -> str:
        return self.token_store.get_token(
            db,
            scope_key_for(integration.tenant_id),
            self.provider.value,
            lambda: self.request_token(integration),
            tenant_id=integration.tenant_id,
        )

    def _token_response(self, response: httpx.Response) -> tuple[str, int]:
        data = response.json()
        token = data.get("access_token")
        if not token:
            raise ProviderAPIError(self.provider.value, "token response missing access_token")
        return token, int(data.get("expires_in") or 3600)

    def _send(
        self,
        method: str,
        path: str,
        action: str,
        token: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            response = httpx.request(
                method,
                f"{self.base_url}{path}",
                headers=headers,
                timeout=settings.provider_http_timeout,
                **kwargs,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            _raise_for_provider(self.provider.value, action, exc)
        return response

    @abstractmethod
    def statement_request(
        self, integration: TenantIntegration, from_date: date, to_date: date
    ) -> tuple[str, str, dict[str, Any]]:
        """Return ``(method, path, request kwargs)`` for a statement query."""

    def fetch_transactions(
        self,
        db: Session,
        integration: TenantIntegration,
        from_date: date,
        to_date: date,
    ) -> list[dict[str, Any]]:
        token = self.access_token(db, integration)
        method, path, kwargs = self.statement_request(integration, from_date, to_date)
        response = self._send(method, path, "fetch_transactions", token=token, **kwargs)
        rows = response.json().get(self.statement_key) or []
        return [row for row in rows if isinstance(row, dict)]

    @abstractmethod
    def webhook_request(
        self, integration: TenantIntegration, callback_url: str
    ) -> tuple[str, dict[str, Any]]:
        """Return ``(path, json body)`` for a webhook subscription."""

    def register_webhook(
        self, db: Session, integration: TenantIntegration, callback_url: str
    ) -> dict[str, Any]:
        token = self.access_token(db, integration)
        path, body = self.webhook_request(integration, callback_url)
        response = self._send("POST", path, "register_webhook", token=token, json=body)
        logger.info(
            "bank_webhook_registered provider=%s tenant_id=%s",
            self.provider.value,
            integration.tenant_id,
        )
        return response.json()

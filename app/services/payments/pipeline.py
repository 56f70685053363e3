"""Ingestion pipeline: adapter, resolver, guard, matcher, writer, notifier."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Mapping
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.metrics import PAYMENT_SIGNATURE_FAILURES, observe_notice
from app.models.account import Account
from app.models.ledger import PaymentProviderName
from app.models.tenant import Tenant
from app.services.credential_crypto import decrypt_credential
from app.services.payments.adapters import MpesaAdapter, get_adapter, get_bank_adapter
from app.services.payments.errors import (
    IngestTimeout,
    PaymentValidationError,
    SignatureError,
)
from app.services.payments.idempotency import IdempotencyGuard
from app.services.payments.ledger import LedgerWriter
from app.services.payments.matcher import AccountMatcher
from app.services.payments.notice import (
    IngestOutcome,
    IngestStatus,
    PaymentNotice,
    ResolvedScope,
    TenantScope,
)
from app.services.payments.notifier import Notifier
from app.services.payments.tenant_resolver import TenantResolver

logger = logging.getLogger(__name__)


class Deadline:
    """Callback budget, checked between stages."""

    def __init__(self, budget_seconds: float | None, clock=time.monotonic):
        self._clock = clock
        self.expires_at = None if budget_seconds is None else clock() + budget_seconds

    def check(self, stage: str) -> None:
        if self.expires_at is not None and self._clock() > self.expires_at:
            raise IngestTimeout(f"Callback budget exceeded at {stage}")


def parse_json_body(body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(body or b"")
    except (ValueError, UnicodeDecodeError) as exc:
        raise PaymentValidationError("Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise PaymentValidationError("Payload must be a JSON object")
    return payload


def _lower_headers(headers: Mapping[str, str] | None) -> dict[str, str]:
    return {key.lower(): value for key, value in (headers or {}).items()}


class PaymentPipeline:
    def __init__(
        self,
        notifier: Notifier | None = None,
        budget_seconds: float | None = None,
    ):
        self._notifier = notifier
        self.budget_seconds = (
            settings.callback_budget_seconds if budget_seconds is None else budget_seconds
        )

    @property
    def notifier(self) -> Notifier:
        if self._notifier is None:
            self._notifier = Notifier()
        return self._notifier

    def _duplicate(self, notice: PaymentNotice, entry) -> IngestOutcome:
        observe_notice(notice.source.value, IngestStatus.duplicate.value)
        logger.info(
            "payment_notice_duplicate provider=%s external_id=%s",
            notice.provider.value,
            notice.transaction_id,
        )
        return IngestOutcome(IngestStatus.duplicate, entry)

    def ingest(
        self,
        db: Session,
        notice: PaymentNotice,
        scope: TenantScope | None = None,
        deadline: Deadline | None = None,
    ) -> IngestOutcome:
        """Commit one notice exactly once.

        Duplicates (including the loser of a concurrent race) come back as
        ``IngestStatus.duplicate`` carrying the existing entry. Nothing is
        persisted if the deadline passes before the commit.
        """
        deadline = deadline or Deadline(self.budget_seconds)
        if scope is None:
            scope = TenantResolver.resolve(db, notice)
        deadline.check("resolve")

        guard_provider = None if isinstance(scope, ResolvedScope) else notice.provider
        existing = IdempotencyGuard.find_existing(
            db, scope, notice.transaction_id, provider=guard_provider
        )
        if existing is not None:
            return self._duplicate(notice, existing)
        deadline.check("idempotency")

        account = AccountMatcher.match(db, scope, notice.raw_reference)
        deadline.check("match")

        try:
            entry = LedgerWriter.write(db, notice, scope, account)
            deadline.check("commit")
            db.commit()
        except IntegrityError:
            db.rollback()
            existing = IdempotencyGuard.find_existing(
                db, scope, notice.transaction_id, provider=notice.provider
            )
            if existing is None:
                raise
            return self._duplicate(notice, existing)
        except Exception:
            db.rollback()
            raise

        db.refresh(entry)
        if account is not None:
            db.refresh(account)
        status = IngestStatus.matched if account is not None else IngestStatus.suspense
        observe_notice(notice.source.value, status.value)
        logger.info(
            "payment_notice_committed provider=%s external_id=%s status=%s tenant_id=%s",
            notice.provider.value,
            notice.transaction_id,
            status.value,
            entry.tenant_id,
        )
        self.notifier.notify_entry(entry, account)
        return IngestOutcome(status, entry)

    def ingest_mpesa(self, db: Session, payload: Mapping[str, Any]) -> IngestOutcome:
        notice = get_adapter(PaymentProviderName.mpesa).normalize(payload)
        return self.ingest(db, notice, TenantResolver.resolve_deferred())

    def ingest_bank(
        self,
        db: Session,
        provider: PaymentProviderName | str,
        body: bytes,
        headers: Mapping[str, str] | None = None,
    ) -> IngestOutcome:
        """Authenticate and ingest a bank webhook.

        The tenant is resolved from the routing identifier first because the
        signing secret belongs to that tenant; the signature is verified
        before anything is written.
        """
        deadline = Deadline(self.budget_seconds)
        adapter = get_bank_adapter(provider)
        payload = parse_json_body(body)
        lowered = _lower_headers(headers)
        integration = TenantResolver.find_integration(
            db, adapter.provider, adapter.routing_hint(payload, lowered)
        )
        signature = lowered.get(adapter.signature_header.lower())
        if not adapter.verify_signature(body, signature, decrypt_credential(integration.api_secret)):
            PAYMENT_SIGNATURE_FAILURES.labels(provider=adapter.provider.value).inc()
            logger.warning(
                "payment_signature_invalid provider=%s tenant_id=%s",
                adapter.provider.value,
                integration.tenant_id,
            )
            raise SignatureError("Invalid signature")
        notice = adapter.normalize(payload, lowered)
        return self.ingest(db, notice, ResolvedScope(integration.tenant), deadline)

    def replay(
        self,
        db: Session,
        provider: PaymentProviderName | str,
        payload: Mapping[str, Any],
        tenant: Tenant | None = None,
    ) -> IngestOutcome:
        """Re-run a provider's original payload through the pipeline.

        Used for gaps reported by reconciliation. The caller is an
        authenticated operator, so no provider signature is required; a
        tenant operator can only replay into their own tenant.
        """
        adapter = get_adapter(provider)
        notice = adapter.normalize(payload)
        if tenant is not None:
            scope: TenantScope = TenantResolver.resolve_explicit(tenant)
        elif isinstance(adapter, MpesaAdapter):
            scope = TenantResolver.resolve_deferred()
        else:
            scope = TenantResolver.resolve_identifier(db, adapter.provider, notice.routing_hint)
        logger.info(
            "payment_notice_replay provider=%s external_id=%s",
            adapter.provider.value,
            notice.transaction_id,
        )
        return self.ingest(db, notice, scope, Deadline(None))

    def record_manual(
        self,
        db: Session,
        tenant: Tenant,
        notice: PaymentNotice,
    ) -> tuple[IngestOutcome, Account | None]:
        """Manual entries must match an account in the operator's tenant."""
        scope = TenantResolver.resolve_explicit(tenant)
        existing = IdempotencyGuard.find_existing(db, scope, notice.transaction_id)
        if existing is not None:
            return self._duplicate(notice, existing), existing.account
        account = AccountMatcher.match(db, scope, notice.raw_reference)
        if account is None:
            raise PaymentValidationError(
                "Account not found with this reference", field="reference"
            )
        outcome = self.ingest(db, notice, scope, Deadline(None))
        return outcome, account


_pipeline: PaymentPipeline | None = None


def get_pipeline() -> PaymentPipeline:
    """Get the process-wide pipeline (and its notifier worker)."""
    global _pipeline
    if _pipeline is None:
        _pipeline = PaymentPipeline()
    return _pipeline


def set_pipeline(pipeline: PaymentPipeline | None) -> None:
    global _pipeline
    _pipeline = pipeline

"""Locate the tenant that owns an inbound notice."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.models.ledger import PaymentProviderName
from app.models.tenant import BankProvider, Tenant, TenantIntegration
from app.services.payments.errors import TenantNotFound
from app.services.payments.notice import (
    UNRESOLVED,
    PaymentNotice,
    ResolvedScope,
    TenantScope,
)

logger = logging.getLogger(__name__)


class TenantResolver:
    """Three strategies, one per channel family.

    * identifier-based (banks): the routing identifier must belong to an
      active tenant whose integration is both enabled and active;
    * deferred (paybill): no tenant yet, the matched account decides;
    * explicit (operators): the authenticated tenant.
    """

    @staticmethod
    def find_integration(
        db: Session, provider: PaymentProviderName | str, routing_hint: str | None
    ) -> TenantIntegration:
        if not routing_hint:
            raise TenantNotFound("Missing routing identifier")
        try:
            bank = BankProvider(PaymentProviderName(provider).value)
        except ValueError as exc:
            raise TenantNotFound(f"No bank integration for provider {provider}") from exc
        integration = (
            db.query(TenantIntegration)
            .join(Tenant, Tenant.id == TenantIntegration.tenant_id)
            .filter(TenantIntegration.provider == bank)
            .filter(TenantIntegration.routing_identifier == routing_hint.strip())
            .filter(TenantIntegration.is_enabled.is_(True))
            .filter(TenantIntegration.is_active.is_(True))
            .filter(Tenant.is_active.is_(True))
            .first()
        )
        if not integration:
            logger.warning(
                "tenant_resolution_failed provider=%s routing=%s",
                bank.value,
                routing_hint,
            )
            raise TenantNotFound("Tenant integration not found")
        return integration

    @staticmethod
    def resolve_identifier(
        db: Session, provider: PaymentProviderName | str, routing_hint: str | None
    ) -> ResolvedScope:
        integration = TenantResolver.find_integration(db, provider, routing_hint)
        return ResolvedScope(integration.tenant)

    @staticmethod
    def resolve_deferred() -> TenantScope:
        return UNRESOLVED

    @staticmethod
    def resolve_explicit(tenant: Tenant) -> ResolvedScope:
        if not tenant.is_active:
            raise TenantNotFound("Tenant is inactive")
        return ResolvedScope(tenant)

    @staticmethod
    def resolve(
        db: Session,
        notice: PaymentNotice,
        routing_hint: str | None = None,
        tenant: Tenant | None = None,
    ) -> TenantScope:
        if tenant is not None:
            return TenantResolver.resolve_explicit(tenant)
        if notice.provider == PaymentProviderName.mpesa:
            return TenantResolver.resolve_deferred()
        return TenantResolver.resolve_identifier(
            db, notice.provider, routing_hint or notice.routing_hint
        )

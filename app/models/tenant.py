import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class SubscriptionStatus(enum.Enum):
    trial = "trial"
    active = "active"
    suspended = "suspended"
    expired = "expired"


class BankProvider(enum.Enum):
    equity = "equity"
    kcb = "kcb"
    coop = "coop"


class Tenant(Base):
    """An onboarded school; the unit of data isolation."""

    __tablename__ = "tenants"
    __table_args__ = (UniqueConstraint("code", name="uq_tenants_code"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    code: Mapped[str] = mapped_column(String(40), nullable=False)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    paybill_number: Mapped[str | None] = mapped_column(String(10))
    contact_phone: Mapped[str | None] = mapped_column(String(20))
    currency: Mapped[str] = mapped_column(String(3), default="KES")
    subscription_status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus), default=SubscriptionStatus.trial
    )
    subscription_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    max_accounts: Mapped[int] = mapped_column(Integer, default=500)
    operator_key_hash: Mapped[str | None] = mapped_column(String(128), index=True)
    sms_receipts: Mapped[bool] = mapped_column(Boolean, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    integrations = relationship("TenantIntegration", back_populates="tenant")
    accounts = relationship("Account", back_populates="tenant")

    def is_subscription_valid(self, now: datetime | None = None) -> bool:
        if self.subscription_status in (
            SubscriptionStatus.suspended,
            SubscriptionStatus.expired,
        ):
            return False
        expires_at = self.subscription_expires_at
        if expires_at is None:
            return True
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at >= (now or datetime.now(timezone.utc))


class TenantIntegration(Base):
    """Per-tenant bank API configuration.

    ``routing_identifier`` is the merchant or account identifier the bank
    embeds in its webhook payloads; it is how an inbound notice is routed to
    the owning tenant. Secrets are stored Fernet-encrypted.
    """

    __tablename__ = "tenant_integrations"
    __table_args__ = (
        UniqueConstraint("tenant_id", "provider", name="uq_tenant_integrations_tenant_provider"),
        UniqueConstraint(
            "provider",
            "routing_identifier",
            name="uq_tenant_integrations_provider_routing",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    provider: Mapped[BankProvider] = mapped_column(Enum(BankProvider), nullable=False)
    routing_identifier: Mapped[str] = mapped_column(String(80), nullable=False)
    api_key: Mapped[str | None] = mapped_column(Text)
    api_secret: Mapped[str | None] = mapped_column(Text)
    consumer_key: Mapped[str | None] = mapped_column(Text)
    consumer_secret: Mapped[str | None] = mapped_column(Text)
    callback_url: Mapped[str | None] = mapped_column(String(255))
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    tenant = relationship("Tenant", back_populates="integrations")

"""Cached provider bearer tokens, scoped per tenant and provider."""

import uuid
from datetime import UTC, datetime, timedelta

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class ProviderToken(Base):
    """A short-lived access token issued by a payment provider.

    ``scope_key`` is ``tenant:<id>`` for bank credentials owned by a tenant
    and ``global`` for platform-level credentials (the shared paybill).
    """

    __tablename__ = "provider_tokens"
    __table_args__ = (
        UniqueConstraint("scope_key", "provider", name="uq_provider_tokens_scope_provider"),
        Index("ix_provider_tokens_expires_at", "expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    scope_key: Mapped[str] = mapped_column(String(64), nullable=False)
    tenant_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id")
    )
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    tenant = relationship("Tenant")

    def is_usable(self, buffer_seconds: int = 0, now: datetime | None = None) -> bool:
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        current = now or datetime.now(UTC)
        return current + timedelta(seconds=buffer_seconds) < expires_at

    def __repr__(self) -> str:
        return f"<ProviderToken(scope={self.scope_key}, provider={self.provider})>"

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base

GLOBAL_SCOPE_KEY = "global"

# Largest value the Numeric(12, 2) amount column holds.
MAX_AMOUNT = Decimal("9999999999.99")


def scope_key_for(tenant_id) -> str:
    """Uniqueness scope for external ids: one namespace per tenant plus ``global``."""
    if tenant_id is None:
        return GLOBAL_SCOPE_KEY
    return f"tenant:{tenant_id}"


class PaymentSource(enum.Enum):
    mpesa = "mpesa"
    bank_agent = "bank_agent"
    bank_transfer = "bank_transfer"
    cash = "cash"
    cheque = "cheque"


class PaymentProviderName(enum.Enum):
    mpesa = "mpesa"
    equity = "equity"
    kcb = "kcb"
    coop = "coop"
    manual = "manual"


class LedgerDirection(enum.Enum):
    credit = "credit"
    debit = "debit"


class LedgerStatus(enum.Enum):
    completed = "completed"
    pending = "pending"
    failed = "failed"
    reversed = "reversed"


class LedgerEntry(Base):
    """One financial event; immutable apart from the reversal transition."""

    __tablename__ = "ledger_entries"
    __table_args__ = (
        UniqueConstraint("scope_key", "external_id", name="uq_ledger_entries_scope_external_id"),
        Index("ix_ledger_entries_tenant_status", "tenant_id", "status"),
        Index("ix_ledger_entries_tenant_provider", "tenant_id", "provider"),
        CheckConstraint("amount > 0", name="ck_ledger_entries_amount_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    external_id: Mapped[str] = mapped_column(String(120), nullable=False)
    scope_key: Mapped[str] = mapped_column(String(64), nullable=False)
    tenant_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id"), index=True
    )
    account_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("accounts.id"), index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    source: Mapped[PaymentSource] = mapped_column(Enum(PaymentSource), nullable=False)
    provider: Mapped[PaymentProviderName] = mapped_column(
        Enum(PaymentProviderName), nullable=False
    )
    direction: Mapped[LedgerDirection] = mapped_column(
        Enum(LedgerDirection), default=LedgerDirection.credit
    )
    status: Mapped[LedgerStatus] = mapped_column(
        Enum(LedgerStatus), default=LedgerStatus.completed
    )
    reference: Mapped[str] = mapped_column(String(120), nullable=False)
    payer_name: Mapped[str | None] = mapped_column(String(160))
    payer_phone: Mapped[str | None] = mapped_column(String(12))
    raw_payload: Mapped[dict | None] = mapped_column(JSON)
    memo: Mapped[str | None] = mapped_column(Text)
    occurred_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reversed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    tenant = relationship("Tenant")
    account = relationship("Account", back_populates="ledger_entries")

    @property
    def balance_delta(self) -> Decimal:
        """Signed effect of this entry on the account balance."""
        amount = Decimal(self.amount)
        if self.direction == LedgerDirection.debit:
            return amount
        return -amount

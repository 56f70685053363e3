from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.models.ledger import (
    MAX_AMOUNT,
    LedgerDirection,
    LedgerStatus,
    PaymentProviderName,
    PaymentSource,
)
from app.models.reconciliation import ReconciliationStatus
from app.services.common import round_money


class ManualPaymentBase(BaseModel):
    reference: str = Field(min_length=1, max_length=40)
    amount: Decimal = Field(gt=0, le=MAX_AMOUNT)
    payer_name: str | None = Field(default=None, max_length=160)
    payer_phone: str | None = Field(default=None, max_length=20)
    occurred_at: datetime | None = None
    memo: str | None = None

    @field_validator("amount")
    @classmethod
    def _round_to_cents(cls, value: Decimal) -> Decimal:
        value = round_money(value)
        if value <= 0:
            raise ValueError("amount must be at least 0.01")
        return value


class CashPaymentCreate(ManualPaymentBase):
    receipt_number: str | None = Field(default=None, max_length=80)


class BankPaymentCreate(ManualPaymentBase):
    transaction_id: str = Field(min_length=1, max_length=120)
    bank_name: str | None = Field(default=None, max_length=80)
    source: PaymentSource = PaymentSource.bank_transfer

    @model_validator(mode="after")
    def _check_source(self) -> "BankPaymentCreate":
        if self.source not in (
            PaymentSource.bank_transfer,
            PaymentSource.bank_agent,
            PaymentSource.cheque,
        ):
            raise ValueError("source must be bank_transfer, bank_agent or cheque")
        return self


class ManualTransactionCreate(ManualPaymentBase):
    """Operator ledger entry; a debit charges the account (fees, fines)."""

    transaction_id: str | None = Field(default=None, max_length=120)
    direction: LedgerDirection = LedgerDirection.credit
    source: PaymentSource = PaymentSource.cash


class LedgerEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    external_id: str
    tenant_id: UUID | None = None
    account_id: UUID | None = None
    amount: Decimal
    direction: LedgerDirection
    source: PaymentSource
    provider: PaymentProviderName
    status: LedgerStatus
    reference: str
    payer_name: str | None = None
    payer_phone: str | None = None
    memo: str | None = None
    occurred_at: datetime | None = None
    reversed_at: datetime | None = None
    created_at: datetime


class ReverseRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=255)


class SourceTotal(BaseModel):
    source: PaymentSource
    count: int
    total: Decimal


class PaymentStats(BaseModel):
    tenant_id: UUID
    total_count: int
    total_amount: Decimal
    pending_count: int
    by_source: list[SourceTotal]


class ReconciliationRunCreate(BaseModel):
    provider: PaymentProviderName
    from_date: date
    to_date: date

    @model_validator(mode="after")
    def _check_window(self) -> "ReconciliationRunCreate":
        if self.to_date < self.from_date:
            raise ValueError("to_date must not be before from_date")
        if self.provider not in (
            PaymentProviderName.equity,
            PaymentProviderName.kcb,
            PaymentProviderName.coop,
        ):
            raise ValueError("reconciliation is only available for bank providers")
        return self


class ReconciliationRunRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    provider: str
    from_date: date
    to_date: date
    status: ReconciliationStatus
    bank_side_count: int
    ledger_side_count: int
    missing_from_ledger: list[dict] | None = None
    missing_from_provider: list[str] | None = None
    error: str | None = None
    started_at: datetime
    finished_at: datetime | None = None


class ReplayRequest(BaseModel):
    provider: PaymentProviderName
    payload: dict


class IngestResult(BaseModel):
    outcome: str
    entry_id: UUID | None = None
    status: LedgerStatus | None = None
    message: str | None = None


class WebhookRegistration(BaseModel):
    callback_url: str = Field(min_length=8, max_length=255)


class MpesaUrlRegistration(BaseModel):
    confirmation_url: str = Field(min_length=8, max_length=255)
    validation_url: str = Field(min_length=8, max_length=255)

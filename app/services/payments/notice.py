"""Value objects passed between pipeline stages."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Union
from uuid import UUID

from app.models.ledger import (
    GLOBAL_SCOPE_KEY,
    LedgerDirection,
    LedgerEntry,
    PaymentProviderName,
    PaymentSource,
    scope_key_for,
)
from app.models.tenant import Tenant


@dataclass(frozen=True)
class PaymentNotice:
    """A normalized inbound payment notification."""

    provider: PaymentProviderName
    source: PaymentSource
    transaction_id: str
    amount: Decimal
    raw_reference: str
    payer_name: str | None = None
    payer_phone: str | None = None
    occurred_at: datetime | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)
    routing_hint: str | None = None
    direction: LedgerDirection = LedgerDirection.credit
    memo: str | None = None


@dataclass(frozen=True)
class ResolvedScope:
    tenant: Tenant

    @property
    def tenant_id(self) -> UUID:
        return self.tenant.id

    @property
    def scope_key(self) -> str:
        return scope_key_for(self.tenant.id)


@dataclass(frozen=True)
class UnresolvedScope:
    """No tenant known yet; lookups are global and the entry lands in suspense."""

    tenant_id = None
    scope_key = GLOBAL_SCOPE_KEY


TenantScope = Union[ResolvedScope, UnresolvedScope]

UNRESOLVED = UnresolvedScope()


class IngestStatus(enum.Enum):
    matched = "matched"
    suspense = "suspense"
    duplicate = "duplicate"


@dataclass
class IngestOutcome:
    status: IngestStatus
    entry: LedgerEntry | None = None

    @property
    def is_duplicate(self) -> bool:
        return self.status == IngestStatus.duplicate

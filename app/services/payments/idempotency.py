"""Fast-path duplicate detection.

The unique constraint on ``(scope_key, external_id)`` is the authority; this
check only avoids matching work for obvious redeliveries.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from app.models.ledger import LedgerEntry, PaymentProviderName
from app.services.payments.notice import ResolvedScope, TenantScope


class IdempotencyGuard:
    @staticmethod
    def find_existing(
        db: Session,
        scope: TenantScope,
        external_id: str,
        provider: PaymentProviderName | None = None,
    ) -> LedgerEntry | None:
        query = db.query(LedgerEntry).filter(LedgerEntry.external_id == external_id)
        if isinstance(scope, ResolvedScope):
            query = query.filter(LedgerEntry.scope_key == scope.scope_key)
        elif provider is not None:
            # Deferred channels: the entry may already sit under the tenant
            # its account resolved to, so look across scopes.
            query = query.filter(LedgerEntry.provider == provider)
        else:
            query = query.filter(LedgerEntry.scope_key == scope.scope_key)
        return query.first()

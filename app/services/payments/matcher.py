from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.models.account import Account
from app.models.tenant import Tenant
from app.services.payments.notice import ResolvedScope, TenantScope

logger = logging.getLogger(__name__)


def normalize_reference(raw_reference: str | None) -> str:
    return (raw_reference or "").strip().upper()


class AccountMatcher:
    @staticmethod
    def match(db: Session, scope: TenantScope, raw_reference: str | None) -> Account | None:
        """Find the account a payer reference points at; None routes to suspense.

        Without a tenant the lookup is global. A reference held by more than
        one tenant is refused rather than guessed.
        """
        reference = normalize_reference(raw_reference)
        if not reference:
            return None
        if isinstance(scope, ResolvedScope):
            return (
                db.query(Account)
                .filter(Account.tenant_id == scope.tenant_id)
                .filter(Account.reference_code == reference)
                .first()
            )
        candidates = (
            db.query(Account)
            .join(Tenant, Tenant.id == Account.tenant_id)
            .filter(Account.reference_code == reference)
            .filter(Tenant.is_active.is_(True))
            .limit(2)
            .all()
        )
        if len(candidates) > 1:
            logger.warning(
                "account_match_ambiguous reference=%s tenants=%s",
                reference,
                ",".join(str(account.tenant_id) for account in candidates),
            )
            return None
        return candidates[0] if candidates else None

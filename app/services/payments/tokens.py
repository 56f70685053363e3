"""Per-tenant provider token cache.

Bearer tokens are persisted in ``provider_tokens`` (encrypted) with an
explicit expiry instead of living on adapter instances, so a token fetched
by one worker is reused by the others until it expires.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from sqlalchemy.orm import Session

from app.config import settings
from app.models.provider_token import ProviderToken
from app.services.credential_crypto import decrypt_credential, encrypt_credential

logger = logging.getLogger(__name__)

# fetcher() -> (access_token, expires_in_seconds)
TokenFetcher = Callable[[], tuple[str, int]]


class TokenStore:
    def __init__(self, buffer_seconds: int | None = None):
        self.buffer_seconds = (
            settings.token_expiry_buffer_seconds if buffer_seconds is None else buffer_seconds
        )
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, scope_key: str, provider: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault((scope_key, provider), threading.Lock())

    def peek(self, db: Session, scope_key: str, provider: str) -> ProviderToken | None:
        return (
            db.query(ProviderToken)
            .filter(ProviderToken.scope_key == scope_key)
            .filter(ProviderToken.provider == provider)
            .first()
        )

    def get_token(
        self,
        db: Session,
        scope_key: str,
        provider: str,
        fetcher: TokenFetcher,
        tenant_id=None,
    ) -> str:
        """Return a usable token, calling ``fetcher`` only when the cached one expired."""
        with self._lock_for(scope_key, provider):
            record = self.peek(db, scope_key, provider)
            if record and record.is_usable():
                return decrypt_credential(record.access_token)

            access_token, expires_in = fetcher()
            expires_at = datetime.now(UTC) + timedelta(
                seconds=max(int(expires_in) - self.buffer_seconds, 0)
            )
            if record is None:
                record = ProviderToken(
                    scope_key=scope_key,
                    tenant_id=tenant_id,
                    provider=provider,
                    access_token=encrypt_credential(access_token),
                    expires_at=expires_at,
                )
                db.add(record)
            else:
                record.access_token = encrypt_credential(access_token)
                record.expires_at = expires_at
            db.commit()
            logger.info(
                "provider_token_refreshed provider=%s scope=%s expires_at=%s",
                provider,
                scope_key,
                expires_at.isoformat(),
            )
            return access_token

    def invalidate(self, db: Session, scope_key: str, provider: str) -> None:
        record = self.peek(db, scope_key, provider)
        if record:
            db.delete(record)
            db.commit()

"""Payment ingestion and reconciliation services.

Usage:
    from app.services import payments as payments_service
    payments_service.manual_payments.record_cash(db, tenant, payload)
    payments_service.get_pipeline().ingest_bank(db, "equity", body, headers)
"""

from app.services.payments.errors import (  # noqa: F401
    AlreadyReversed,
    IngestTimeout,
    PaymentError,
    PaymentValidationError,
    ProviderAPIError,
    SignatureError,
    TenantNotFound,
)
from app.services.payments.idempotency import IdempotencyGuard
from app.services.payments.ledger import LedgerWriter
from app.services.payments.manual import ManualPayments
from app.services.payments.matcher import AccountMatcher
from app.services.payments.notice import (  # noqa: F401
    UNRESOLVED,
    IngestOutcome,
    IngestStatus,
    PaymentNotice,
    ResolvedScope,
    TenantScope,
    UnresolvedScope,
)
from app.services.payments.notifier import Notifier  # noqa: F401
from app.services.payments.pipeline import (  # noqa: F401
    Deadline,
    PaymentPipeline,
    get_pipeline,
    set_pipeline,
)
from app.services.payments.provider_admin import ProviderAdmin
from app.services.payments.reconciliation import ReconciliationSweeper
from app.services.payments.tenant_resolver import TenantResolver
from app.services.payments.tokens import TokenStore
from app.services.payments.transactions import Transactions

# Singleton instances for service access
token_store = TokenStore()
tenant_resolver = TenantResolver()
idempotency_guard = IdempotencyGuard()
account_matcher = AccountMatcher()
ledger_writer = LedgerWriter()
manual_payments = ManualPayments()
transactions = Transactions()
reconciliation_sweeper = ReconciliationSweeper(token_store=token_store)
provider_admin = ProviderAdmin(reconciliation_sweeper, token_store)

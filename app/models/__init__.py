from app.models.account import Account, AccountStatus  # noqa: F401
from app.models.ledger import (  # noqa: F401
    GLOBAL_SCOPE_KEY,
    LedgerDirection,
    LedgerEntry,
    LedgerStatus,
    PaymentProviderName,
    PaymentSource,
    scope_key_for,
)
from app.models.provider_token import ProviderToken  # noqa: F401
from app.models.reconciliation import (  # noqa: F401
    ReconciliationRun,
    ReconciliationStatus,
)
from app.models.tenant import (  # noqa: F401
    BankProvider,
    SubscriptionStatus,
    Tenant,
    TenantIntegration,
)

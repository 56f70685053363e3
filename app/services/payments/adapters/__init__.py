"""Provider adapters, one per payment channel, and their API clients."""

from app.models.ledger import PaymentProviderName
from app.services.payments.adapters.base import (  # noqa: F401
    ProviderAdapter,
    normalize_phone,
    parse_amount,
    parse_timestamp,
)
from app.services.payments.adapters.coop import CoopAdapter, CoopClient
from app.services.payments.adapters.equity import EquityAdapter, EquityClient
from app.services.payments.adapters.kcb import KCBAdapter, KCBClient
from app.services.payments.adapters.mpesa import MpesaAdapter, MpesaClient  # noqa: F401
from app.services.payments.errors import PaymentValidationError

ADAPTERS: dict[PaymentProviderName, ProviderAdapter] = {
    PaymentProviderName.mpesa: MpesaAdapter(),
    PaymentProviderName.equity: EquityAdapter(),
    PaymentProviderName.kcb: KCBAdapter(),
    PaymentProviderName.coop: CoopAdapter(),
}

BANK_CLIENTS = {
    PaymentProviderName.equity: EquityClient,
    PaymentProviderName.kcb: KCBClient,
    PaymentProviderName.coop: CoopClient,
}

BANK_PROVIDERS = frozenset(BANK_CLIENTS)


def get_adapter(provider: PaymentProviderName | str) -> ProviderAdapter:
    try:
        key = PaymentProviderName(provider)
        return ADAPTERS[key]
    except (ValueError, KeyError) as exc:
        raise PaymentValidationError(f"Unsupported provider: {provider}") from exc


def get_bank_adapter(provider: PaymentProviderName | str) -> ProviderAdapter:
    adapter = get_adapter(provider)
    if adapter.provider not in BANK_PROVIDERS:
        raise PaymentValidationError(f"Not a bank provider: {provider}")
    return adapter

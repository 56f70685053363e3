"""Domain exceptions raised by the payment ingestion pipeline.

Provider-facing endpoints translate these into acknowledgement payloads;
operator-facing services convert them into ``HTTPException``.
"""


class PaymentError(Exception):
    """Base class for payment pipeline failures."""


class PaymentValidationError(PaymentError):
    """The inbound payload is malformed or missing required fields."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class SignatureError(PaymentError):
    """The payload signature is missing or does not match the tenant secret."""


class TenantNotFound(PaymentError):
    """No active tenant integration owns the routing identifier."""


class IngestTimeout(PaymentError):
    """The callback budget ran out before the ledger commit."""


class AlreadyReversed(PaymentError):
    """The ledger entry has already been reversed."""


class ProviderAPIError(PaymentError):
    """An outbound call to a provider API failed."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider

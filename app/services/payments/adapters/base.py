"""Shared provider adapter contract and field parsing helpers."""

from __future__ import annotations

import base64
import hashlib
import hmac
import math
import re
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping
from zoneinfo import ZoneInfo

from app.models.ledger import MAX_AMOUNT, PaymentProviderName, PaymentSource
from app.services.common import secure_compare
from app.services.payments.errors import PaymentValidationError
from app.services.payments.notice import PaymentNotice

KENYA_TZ = ZoneInfo("Africa/Nairobi")

# Banks that cannot embed the collecting account in the body send it here.
ROUTING_HEADER = "X-Account-Number"

_MASK_CHARS = ("*", "x", "X", "#", "•")
_NON_DIGITS = re.compile(r"\D")


def parse_amount(value: Any) -> Decimal:
    """Coerce a provider amount to a positive two-place Decimal."""
    if value is None or isinstance(value, bool):
        raise PaymentValidationError("Amount is required", field="amount")
    try:
        amount = Decimal(str(value).strip().replace(",", ""))
    except (InvalidOperation, ValueError) as exc:
        raise PaymentValidationError("Amount must be numeric", field="amount") from exc
    if not amount.is_finite():
        raise PaymentValidationError("Amount must be finite", field="amount")
    try:
        amount = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise PaymentValidationError("Amount is out of range", field="amount") from exc
    if amount <= 0:
        raise PaymentValidationError("Amount must be at least 0.01", field="amount")
    if amount > MAX_AMOUNT:
        raise PaymentValidationError("Amount is out of range", field="amount")
    return amount


def normalize_phone(value: Any) -> str | None:
    """Return a 12-digit ``254`` number, or None for masked or invalid input.

    Daraja and some bank feeds mask part of the MSISDN (``2547 ***** 126``);
    a masked value is never stored.
    """
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    raw = str(value).strip()
    if not raw or any(char in raw for char in _MASK_CHARS):
        return None
    digits = _NON_DIGITS.sub("", raw)
    if len(digits) == 12 and digits.startswith("254"):
        return digits
    return None


def join_name(*parts: Any) -> str | None:
    name = " ".join(str(part).strip() for part in parts if part and str(part).strip())
    return name or None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO-8601 or compact ``YYYYMMDDHHMMSS`` timestamps.

    Naive values are taken to be East Africa Time. Unparseable values yield
    None; the ledger falls back to its own insert time.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.isdigit() and len(text) == 14:
            try:
                parsed = datetime.strptime(text, "%Y%m%d%H%M%S")
            except ValueError:
                return None
        else:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=KENYA_TZ)
    return parsed.astimezone(UTC)


def hmac_sha256(secret: str, body: bytes, encoding: str = "hex") -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256)
    if encoding == "base64":
        return base64.b64encode(digest.digest()).decode("ascii")
    return digest.hexdigest()


class ProviderAdapter(ABC):
    """Translate one provider's wire format into a :class:`PaymentNotice`.

    Subclasses name the payload fields they read; the shared ``normalize``
    enforces the required-field, amount and phone rules for every channel.
    """

    provider: PaymentProviderName
    source: PaymentSource = PaymentSource.bank_transfer
    transaction_field: str
    amount_field: str
    reference_field: str
    phone_field: str | None = None
    time_field: str | None = None
    routing_field: str | None = None
    signature_header: str | None = None
    signature_encoding = "hex"

    def normalize(
        self, raw_payload: Mapping[str, Any], headers: Mapping[str, str] | None = None
    ) -> PaymentNotice:
        if not isinstance(raw_payload, Mapping):
            raise PaymentValidationError("Payload must be a JSON object")
        transaction_id = self.extract_transaction_id(raw_payload)
        amount = self.extract_amount(raw_payload)
        reference = self.extract_reference(raw_payload)
        payer_name, payer_phone = self.extract_payer(raw_payload)
        return PaymentNotice(
            provider=self.provider,
            source=self.source,
            transaction_id=transaction_id,
            amount=amount,
            raw_reference=reference,
            payer_name=payer_name,
            payer_phone=payer_phone,
            occurred_at=self.extract_occurred_at(raw_payload),
            raw_payload=dict(raw_payload),
            routing_hint=self.routing_hint(raw_payload, headers),
        )

    def _required(self, payload: Mapping[str, Any], field: str) -> str:
        value = payload.get(field)
        if value is None or not str(value).strip():
            raise PaymentValidationError(f"Missing required field: {field}", field=field)
        return str(value).strip()

    def extract_transaction_id(self, payload: Mapping[str, Any]) -> str:
        return self._required(payload, self.transaction_field)

    def extract_amount(self, payload: Mapping[str, Any]) -> Decimal:
        if payload.get(self.amount_field) in (None, ""):
            raise PaymentValidationError(
                f"Missing required field: {self.amount_field}", field=self.amount_field
            )
        return parse_amount(payload.get(self.amount_field))

    def extract_reference(self, payload: Mapping[str, Any]) -> str:
        return self._required(payload, self.reference_field)

    @abstractmethod
    def extract_payer(self, payload: Mapping[str, Any]) -> tuple[str | None, str | None]:
        """Return ``(payer_name, payer_phone)``; the phone is already normalized."""

    def extract_occurred_at(self, payload: Mapping[str, Any]) -> datetime | None:
        if not self.time_field:
            return None
        return parse_timestamp(payload.get(self.time_field))

    def routing_hint(
        self, payload: Mapping[str, Any], headers: Mapping[str, str] | None = None
    ) -> str | None:
        value = payload.get(self.routing_field) if self.routing_field else None
        if value in (None, "") and headers is not None:
            value = headers.get(ROUTING_HEADER) or headers.get(ROUTING_HEADER.lower())
        return str(value).strip() if value not in (None, "") else None

    def compute_signature(self, body: bytes, secret: str) -> str:
        return hmac_sha256(secret, body, self.signature_encoding)

    def verify_signature(self, body: bytes, signature: str | None, secret: str | None) -> bool:
        """Constant-time comparison of the delivered signature against the tenant secret."""
        if not signature or not secret:
            return False
        expected = self.compute_signature(body, secret)
        return secure_compare(expected, signature.strip())

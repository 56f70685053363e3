"""Query and value helpers shared by the payment services.

Invalid operator input (identifiers, filters, sort keys) surfaces as
``HTTPException(400)``.
"""

from __future__ import annotations

import hmac
import uuid
from decimal import ROUND_HALF_UP, Decimal

from fastapi import HTTPException


def coerce_uuid(value):
    """Convert value to UUID, returning None if value is None."""
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid identifier") from exc


def secure_compare(expected: str, supplied: str) -> bool:
    """Constant-time equality over UTF-8 bytes.

    Signatures, tokens and API keys arrive from unauthenticated callers and may
    hold non-ASCII text, which ``compare_digest`` refuses for ``str``.
    """
    return hmac.compare_digest(
        expected.encode("utf-8", "surrogatepass"), supplied.encode("utf-8", "surrogatepass")
    )


def apply_ordering(query, order_by: str, order_dir: str, allowed_columns: dict, tiebreak=None):
    """Order by a whitelisted column.

    ``tiebreak`` (usually the primary key) keeps pages stable when many rows
    share a timestamp, as bulk-imported statements do.
    """
    if order_by not in allowed_columns:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid order_by. Allowed: {', '.join(sorted(allowed_columns))}",
        )
    column = allowed_columns[order_by]
    ordered = column.desc() if order_dir == "desc" else column.asc()
    if tiebreak is None:
        return query.order_by(ordered)
    return query.order_by(ordered, tiebreak.desc() if order_dir == "desc" else tiebreak.asc())


def apply_pagination(query, limit: int, offset: int):
    return query.limit(limit).offset(offset)


def validate_enum(value, enum_cls, label: str):
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_cls)
        raise HTTPException(
            status_code=400, detail=f"Invalid {label}. Allowed: {allowed}"
        ) from exc


def round_money(value: Decimal | int | float | str) -> Decimal:
    """Shillings to cents, half up (how M-Pesa and the banks display amounts)."""
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

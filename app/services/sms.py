"""Payment receipt SMS via Africa's Talking.

Configuration via environment variables:
- SMS_API_KEY: Africa's Talking API key (receipts are skipped when unset)
- SMS_USERNAME: Africa's Talking username (``sandbox`` for testing)
- SMS_SENDER_ID: optional alphanumeric sender id
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

import httpx

from app.config import settings
from app.models.account import Account
from app.models.ledger import LedgerEntry
from app.services.payments.adapters import normalize_phone

logger = logging.getLogger(__name__)

AFRICASTALKING_URL = "https://api.africastalking.com/version1/messaging"


def _format_amount(value) -> str:
    return f"{Decimal(value):,.2f}"


def build_receipt_message(entry: LedgerEntry, account: Account) -> str:
    currency = settings.currency
    return (
        f"Dear Parent, received {currency} {_format_amount(entry.amount)} for {account.name}. "
        f"New Balance: {currency} {_format_amount(account.balance)}. Ref: {entry.external_id}."
    )


def guardian_msisdn(phone: str | None) -> str | None:
    """Guardian numbers are entered by school staff, often in local 07.. form."""
    if not phone:
        return None
    digits = "".join(char for char in phone if char.isdigit())
    if len(digits) == 10 and digits.startswith("0"):
        digits = f"254{digits[1:]}"
    return normalize_phone(digits)


def receipt_recipient(entry: LedgerEntry, account: Account) -> str | None:
    """Guardian phone first; paybill MSISDNs usually arrive masked."""
    return guardian_msisdn(account.guardian_phone) or entry.payer_phone


def _send_via_africastalking(
    api_key: str,
    username: str,
    from_number: str | None,
    to_phone: str,
    body: str,
) -> tuple[bool, str | None, str | None]:
    """Send SMS via Africa's Talking.

    Returns: (success, message_id, error_message)
    """
    headers = {
        "Accept": "application/json",
        "Content-Type": "application/x-www-form-urlencoded",
        "apiKey": api_key,
    }
    data: dict[str, Any] = {
        "username": username,
        "to": f"+{to_phone}",
        "message": body,
    }
    if from_number:
        data["from"] = from_number

    try:
        response = httpx.post(AFRICASTALKING_URL, headers=headers, data=data, timeout=30.0)
    except httpx.HTTPError as exc:
        logger.warning("sms_send_failed provider=africastalking error=%s", exc)
        return False, None, str(exc)

    if response.status_code not in (200, 201):
        if response.status_code in (401, 403):
            logger.error(
                "sms_auth_failed provider=africastalking status=%s",
                response.status_code,
            )
        return False, None, f"HTTP {response.status_code}"

    recipients = response.json().get("SMSMessageData", {}).get("Recipients", [])
    if not recipients:
        return False, None, "No recipients in response"
    recipient = recipients[0]
    status = recipient.get("status", "")
    if status in ("Success", "Sent"):
        return True, recipient.get("messageId"), None
    return False, None, status


def send_receipt(entry: LedgerEntry, account: Account) -> tuple[bool, str | None, str | None]:
    if not settings.sms_api_key:
        return False, None, "SMS gateway not configured"
    to_phone = receipt_recipient(entry, account)
    if not to_phone:
        return False, None, "No deliverable phone number"
    return _send_via_africastalking(
        settings.sms_api_key,
        settings.sms_username,
        settings.sms_sender_id,
        to_phone,
        build_receipt_message(entry, account),
    )

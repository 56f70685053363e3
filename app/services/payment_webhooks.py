"""Provider-facing callback orchestration.

Providers retry on anything but an affirmative acknowledgement, so after
authentication and shape checks every outcome, internal errors included,
is acknowledged. Failures are logged and counted instead.
"""

from __future__ import annotations

import logging

from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.metrics import PAYMENT_INGEST_ERRORS, observe_notice
from app.services.payments import (
    IngestStatus,
    IngestTimeout,
    PaymentValidationError,
    SignatureError,
    TenantNotFound,
    get_pipeline,
)
from app.models.ledger import PaymentProviderName
from app.services.payments.adapters import BANK_PROVIDERS, MpesaAdapter
from app.services.payments.pipeline import parse_json_body

_mpesa_logger = logging.getLogger(f"{__name__}.mpesa")
_bank_logger = logging.getLogger(f"{__name__}.bank")

MPESA_ACCEPTED = {"ResultCode": 0, "ResultDesc": "Accepted"}


def process_mpesa_validation() -> dict:
    """Never reject money at the gate; checks happen on confirmation."""
    return dict(MPESA_ACCEPTED)


def _mpesa_response(code: int, desc: str, status_code: int = 200) -> JSONResponse:
    return JSONResponse({"ResultCode": code, "ResultDesc": desc}, status_code=status_code)


def process_mpesa_confirmation(
    *, db: Session, body: bytes, token: str | None = None
) -> JSONResponse:
    if not MpesaAdapter.verify_callback_token(token):
        _mpesa_logger.warning("mpesa_confirmation_rejected reason=callback_token")
        observe_notice("mpesa", "rejected")
        return _mpesa_response(1, "Rejected", status_code=401)

    try:
        payload = parse_json_body(body)
        outcome = get_pipeline().ingest_mpesa(db, payload)
    except PaymentValidationError as exc:
        _mpesa_logger.warning("mpesa_confirmation_invalid error=%s", exc)
        observe_notice("mpesa", "invalid")
        return _mpesa_response(1, "Missing required fields")
    except IngestTimeout as exc:
        PAYMENT_INGEST_ERRORS.labels(channel="mpesa", stage="timeout").inc()
        _mpesa_logger.error("mpesa_confirmation_timeout error=%s", exc)
        return _mpesa_response(0, "Error but received")
    except Exception as exc:
        PAYMENT_INGEST_ERRORS.labels(channel="mpesa", stage="commit").inc()
        _mpesa_logger.exception("mpesa_confirmation_error error=%s", exc)
        return _mpesa_response(0, "Error but received")

    if outcome.status == IngestStatus.duplicate:
        return _mpesa_response(0, "Duplicate")
    return _mpesa_response(0, "Processed")


def metric_channel(provider: str) -> str:
    """Label value for a path-supplied provider; unknown names share one series."""
    try:
        name = PaymentProviderName(provider)
    except ValueError:
        return "unknown"
    return name.value if name in BANK_PROVIDERS else "unknown"


def process_bank_webhook(
    *, db: Session, provider: str, body: bytes, headers
) -> JSONResponse:
    channel = metric_channel(provider)
    try:
        outcome = get_pipeline().ingest_bank(db, provider, body, headers)
    except (SignatureError, TenantNotFound) as exc:
        observe_notice(channel, "rejected")
        _bank_logger.warning("bank_webhook_rejected provider=%s reason=%s", provider, exc)
        return JSONResponse({"status": "rejected"}, status_code=401)
    except PaymentValidationError as exc:
        observe_notice(channel, "invalid")
        _bank_logger.warning("bank_webhook_invalid provider=%s error=%s", provider, exc)
        return JSONResponse({"status": "invalid payload", "detail": str(exc)}, status_code=400)
    except IngestTimeout as exc:
        PAYMENT_INGEST_ERRORS.labels(channel=channel, stage="timeout").inc()
        _bank_logger.error("bank_webhook_timeout provider=%s error=%s", provider, exc)
        return JSONResponse({"status": "ok"}, status_code=200)
    except Exception as exc:
        PAYMENT_INGEST_ERRORS.labels(channel=channel, stage="commit").inc()
        _bank_logger.exception("bank_webhook_error provider=%s error=%s", provider, exc)
        return JSONResponse({"status": "ok"}, status_code=200)

    return JSONResponse(
        {"status": "ok", "result": outcome.status.value}, status_code=200
    )

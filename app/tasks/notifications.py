import logging

from app.celery_app import celery_app
from app.db import SessionLocal
from app.models.account import Account
from app.models.ledger import LedgerDirection, LedgerEntry, LedgerStatus
from app.services import sms as sms_service
from app.services.common import coerce_uuid

logger = logging.getLogger(__name__)


def _send_payment_receipt(db, entry_id: str) -> bool:
    entry = db.get(LedgerEntry, coerce_uuid(entry_id))
    if not entry or entry.status != LedgerStatus.completed or not entry.account_id:
        logger.info("payment_receipt_skipped entry_id=%s reason=not_matched", entry_id)
        return False
    if entry.direction != LedgerDirection.credit:
        logger.info("payment_receipt_skipped entry_id=%s reason=charge", entry_id)
        return False
    account = db.get(Account, entry.account_id)
    if not account or (entry.tenant and not entry.tenant.sms_receipts):
        logger.info("payment_receipt_skipped entry_id=%s reason=disabled", entry_id)
        return False
    success, message_id, error = sms_service.send_receipt(entry, account)
    if success:
        logger.info("payment_receipt_sent entry_id=%s message_id=%s", entry_id, message_id)
    else:
        logger.warning("payment_receipt_failed entry_id=%s error=%s", entry_id, error)
    return success


@celery_app.task(name="app.tasks.notifications.send_payment_receipt")
def send_payment_receipt(entry_id: str):
    session = SessionLocal()
    try:
        return _send_payment_receipt(session, entry_id)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

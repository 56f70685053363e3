"""Real-time payment events and receipt queueing.

``Notifier.publish`` only enqueues; a daemon worker drains the queue into
Redis pub/sub where every API instance's websocket manager fans events out
to connected dashboards. Nothing here can fail or slow down ingestion: a full
queue drops the event and counts it.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
from decimal import Decimal
from typing import Protocol

import redis

from app.config import settings
from app.metrics import NOTIFIER_DROPPED
from app.models.account import Account
from app.models.ledger import LedgerDirection, LedgerEntry, LedgerStatus
from app.websocket.events import EventType, WebSocketEvent

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "payments_ws:"
PLATFORM_CHANNEL = "platform"


def channel_for(tenant_id) -> str:
    return f"{CHANNEL_PREFIX}{tenant_id or PLATFORM_CHANNEL}"


class Publisher(Protocol):
    def publish(self, channel: str, message: str) -> None:
        ...


class RedisPublisher:
    def __init__(self, redis_url: str | None = None):
        self.redis_url = redis_url or settings.redis_url
        self._client: redis.Redis | None = None

    def publish(self, channel: str, message: str) -> None:
        if self._client is None:
            self._client = redis.Redis.from_url(self.redis_url, decode_responses=True)
        self._client.publish(channel, message)


def _amount(value) -> str:
    return str(Decimal(value).quantize(Decimal("0.01")))


def build_payment_event(entry: LedgerEntry, account: Account | None = None) -> WebSocketEvent:
    """Self-contained event: a dashboard can render it without a follow-up query."""
    matched = entry.status == LedgerStatus.completed and account is not None
    occurred = entry.occurred_at or entry.created_at
    data = {
        "entry_id": str(entry.id),
        "tenant_id": str(entry.tenant_id) if entry.tenant_id else None,
        "transaction_id": entry.external_id,
        "amount": _amount(entry.amount),
        "direction": entry.direction.value,
        "currency": settings.currency,
        "channel": entry.source.value,
        "provider": entry.provider.value,
        "reference": entry.reference,
        "payer_name": entry.payer_name,
        "occurred_at": occurred.isoformat() if occurred else None,
    }
    if matched:
        data.update(
            {
                "account_id": str(account.id),
                "account_reference": account.reference_code,
                "display_name": account.name,
                "class_level": account.class_level,
                "new_balance": _amount(account.balance),
            }
        )
        return WebSocketEvent(event=EventType.PAYMENT_MATCHED, data=data)
    data["display_name"] = entry.payer_name or entry.reference
    return WebSocketEvent(event=EventType.PAYMENT_SUSPENSE, data=data)


class Notifier:
    def __init__(
        self,
        publisher: Publisher | None = None,
        queue_size: int | None = None,
        autostart: bool = True,
    ):
        self.publisher = publisher or RedisPublisher()
        self._queue: queue.Queue = queue.Queue(maxsize=queue_size or settings.notifier_queue_size)
        self._worker: threading.Thread | None = None
        self._lock = threading.Lock()
        self.autostart = autostart

    def _ensure_worker(self) -> None:
        if not self.autostart:
            return
        with self._lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(
                    target=self._run, name="payment-notifier", daemon=True
                )
                self._worker.start()

    def publish(self, event: WebSocketEvent) -> bool:
        """Enqueue an event for delivery; returns False when it was dropped."""
        tenant_id = event.data.get("tenant_id")
        message = json.dumps({"tenant_id": tenant_id, "event": event.model_dump(mode="json")})
        try:
            self._queue.put_nowait((channel_for(tenant_id), message))
        except queue.Full:
            NOTIFIER_DROPPED.labels(reason="queue_full").inc()
            logger.warning("payment_event_dropped reason=queue_full event=%s", event.event.value)
            return False
        self._ensure_worker()
        return True

    def notify_entry(self, entry: LedgerEntry, account: Account | None = None) -> None:
        try:
            self.publish(build_payment_event(entry, account))
        except Exception as exc:
            NOTIFIER_DROPPED.labels(reason="build_error").inc()
            logger.warning("payment_event_build_error entry_id=%s error=%s", entry.id, exc)
            return
        if (
            account is not None
            and entry.status == LedgerStatus.completed
            and entry.direction == LedgerDirection.credit
        ):
            self.queue_receipt(entry)

    def queue_receipt(self, entry: LedgerEntry) -> None:
        if not settings.receipts_enabled:
            return
        try:
            from app.tasks.notifications import send_payment_receipt

            send_payment_receipt.delay(str(entry.id))
        except Exception as exc:
            NOTIFIER_DROPPED.labels(reason="receipt_enqueue").inc()
            logger.warning("payment_receipt_enqueue_error entry_id=%s error=%s", entry.id, exc)

    def _deliver(self, channel: str, message: str) -> None:
        try:
            self.publisher.publish(channel, message)
        except Exception as exc:
            NOTIFIER_DROPPED.labels(reason="publish_error").inc()
            logger.warning("payment_event_publish_error channel=%s error=%s", channel, exc)

    def _run(self) -> None:
        while True:
            channel, message = self._queue.get()
            try:
                self._deliver(channel, message)
            finally:
                self._queue.task_done()

    def flush(self) -> int:
        """Deliver everything queued on the calling thread; returns the count."""
        delivered = 0
        while True:
            try:
                channel, message = self._queue.get_nowait()
            except queue.Empty:
                return delivered
            try:
                self._deliver(channel, message)
                delivered += 1
            finally:
                self._queue.task_done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel


class EventType(str, Enum):
    """WebSocket event types for the payments dashboard."""

    PAYMENT_MATCHED = "payment_matched"
    PAYMENT_SUSPENSE = "payment_suspense"
    CONNECTION_ACK = "connection_ack"
    HEARTBEAT = "heartbeat"


class WebSocketEvent(BaseModel):
    """Outbound WebSocket event sent to clients."""

    event: EventType
    data: dict[str, Any]
    timestamp: datetime | None = None

    def model_post_init(self, __context: Any) -> None:
        if self.timestamp is None:
            object.__setattr__(self, "timestamp", datetime.now(UTC))


class InboundMessageType(str, Enum):
    PING = "ping"


class InboundMessage(BaseModel):
    """Message received from WebSocket client."""

    type: InboundMessageType
    data: dict[str, Any] | None = None

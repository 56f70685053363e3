from __future__ import annotations

import asyncio
import json

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from app.config import settings
from app.logging import get_logger
from app.services.payments.notifier import CHANNEL_PREFIX, PLATFORM_CHANNEL
from app.websocket.events import EventType, WebSocketEvent

logger = get_logger(__name__)


class ConnectionManager:
    """
    Fans payment events out from Redis pub/sub to dashboard websockets.

    Local connection pool: audience -> [WebSocket], where the audience is a
    tenant id or ``platform``. Platform connections see every tenant's events
    plus unresolved (global suspense) ones.
    """

    def __init__(self, redis_url: str | None = None):
        self.redis_url = redis_url or settings.redis_url
        self._connections: dict[str, list[WebSocket]] = {}
        self._redis_client = None
        self._pubsub = None
        self._listener_task: asyncio.Task | None = None
        self._running = False

    async def connect(self):
        """Initialize Redis connection and start listener."""
        try:
            import redis.asyncio as aioredis

            self._redis_client = aioredis.from_url(self.redis_url, decode_responses=True)
            self._pubsub = self._redis_client.pubsub()
            await self._pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
            self._running = True
            self._listener_task = asyncio.create_task(self._redis_listener())
            logger.info("websocket_manager_connected redis=%s", self.redis_url)
        except Exception as exc:
            logger.warning("websocket_manager_redis_failed error=%s", exc)

    async def disconnect(self):
        """Cleanup Redis connection and stop listener."""
        self._running = False
        if self._listener_task:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
        if self._pubsub:
            await self._pubsub.punsubscribe()
            await self._pubsub.close()
        if self._redis_client:
            await self._redis_client.close()
        logger.info("websocket_manager_disconnected")

    async def _redis_listener(self):
        try:
            while self._running:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=1.0
                )
                if message and message["type"] == "pmessage":
                    await self.handle_message(message["data"])
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            logger.error("websocket_redis_listener_error error=%s", exc)

    async def handle_message(self, data: str):
        """Route one published payload to the tenant's and the platform's sockets."""
        try:
            payload = json.loads(data)
        except (TypeError, ValueError) as exc:
            logger.warning("websocket_redis_message_error error=%s", exc)
            return
        event_data = payload.get("event")
        if not event_data:
            return
        tenant_id = payload.get("tenant_id")
        if tenant_id:
            await self._send_to(str(tenant_id), event_data)
        await self._send_to(PLATFORM_CHANNEL, event_data)

    async def _send_to(self, audience: str, event_data: dict):
        for ws in list(self._connections.get(audience, [])):
            try:
                if ws.client_state == WebSocketState.CONNECTED:
                    await ws.send_json(event_data)
            except Exception:
                await self._remove_connection(audience, ws)

    async def register_connection(self, audience: str, websocket: WebSocket):
        self._connections.setdefault(audience, []).append(websocket)
        logger.debug("websocket_registered audience=%s", audience)

        ack_event = WebSocketEvent(
            event=EventType.CONNECTION_ACK,
            data={"audience": audience, "status": "connected"},
        )
        await websocket.send_json(ack_event.model_dump(mode="json"))

    async def unregister_connection(self, audience: str, websocket: WebSocket):
        await self._remove_connection(audience, websocket)

    async def _remove_connection(self, audience: str, websocket: WebSocket):
        connections = self._connections.get(audience)
        if connections is None:
            return
        if websocket in connections:
            connections.remove(websocket)
        if not connections:
            del self._connections[audience]
        logger.debug("websocket_unregistered audience=%s", audience)

    def connection_count(self, audience: str | None = None) -> int:
        if audience is not None:
            return len(self._connections.get(audience, []))
        return sum(len(items) for items in self._connections.values())

    async def send_heartbeat(self, audience: str, websocket: WebSocket):
        heartbeat = WebSocketEvent(
            event=EventType.HEARTBEAT,
            data={"status": "ok"},
        )
        try:
            await websocket.send_json(heartbeat.model_dump(mode="json"))
        except Exception:
            await self._remove_connection(audience, websocket)


# Singleton instance
_manager: ConnectionManager | None = None


def get_connection_manager() -> ConnectionManager:
    """Get the singleton ConnectionManager instance."""
    global _manager
    if _manager is None:
        _manager = ConnectionManager()
    return _manager

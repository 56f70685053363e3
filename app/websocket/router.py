from __future__ import annotations

import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from app.logging import get_logger
from app.websocket.auth import authenticate_websocket
from app.websocket.events import InboundMessage, InboundMessageType
from app.websocket.manager import get_connection_manager

logger = get_logger(__name__)

router = APIRouter(tags=["websocket"])


@router.websocket("/ws/payments")
async def payments_websocket(websocket: WebSocket):
    """
    Real-time payment feed for school dashboards.

    Server events: payment_matched, payment_suspense, heartbeat.
    Client actions: ping.
    """
    await websocket.accept()

    audience = await authenticate_websocket(websocket)
    if not audience:
        return

    manager = get_connection_manager()
    await manager.register_connection(audience, websocket)

    try:
        while True:
            data = await websocket.receive_text()
            await _handle_client_message(audience, websocket, data, manager)
    except WebSocketDisconnect:
        logger.debug("websocket_disconnected audience=%s", audience)
    except Exception as exc:
        logger.warning("websocket_error audience=%s error=%s", audience, exc)
    finally:
        await manager.unregister_connection(audience, websocket)


async def _handle_client_message(audience: str, websocket: WebSocket, raw_data: str, manager):
    try:
        message = InboundMessage(**json.loads(raw_data))
    except json.JSONDecodeError:
        logger.warning("websocket_invalid_json audience=%s", audience)
        return
    except (TypeError, ValidationError) as exc:
        logger.warning("websocket_message_error audience=%s error=%s", audience, exc)
        return

    if message.type == InboundMessageType.PING:
        await manager.send_heartbeat(audience, websocket)

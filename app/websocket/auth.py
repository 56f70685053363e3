from __future__ import annotations

from fastapi import HTTPException, WebSocket

from app.api.deps import authenticate_api_key
from app.db import SessionLocal
from app.services.payments.notifier import PLATFORM_CHANNEL


async def authenticate_websocket(websocket: WebSocket) -> str | None:
    """
    Authenticate a dashboard WebSocket connection.

    Reads the operator API key from ``?api_key=`` (browsers cannot set headers
    on a websocket handshake) and an optional ``?tenant=`` code for platform
    operators. Returns the audience to register under, None if rejected.
    """
    api_key = websocket.query_params.get("api_key")
    tenant_code = websocket.query_params.get("tenant")

    if not api_key:
        await websocket.close(code=4001, reason="Authentication required")
        return None

    db = SessionLocal()
    try:
        context = authenticate_api_key(db, api_key, tenant_code)
    except HTTPException as exc:
        await websocket.close(code=4001 if exc.status_code == 401 else 4003, reason=exc.detail)
        return None
    finally:
        db.close()
    if context.tenant is not None:
        return str(context.tenant.id)
    return PLATFORM_CHANNEL

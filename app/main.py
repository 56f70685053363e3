import logging

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from app.api.bank_webhooks import router as bank_webhooks_router
from app.api.integrations import router as integrations_router
from app.api.mpesa import router as mpesa_router
from app.api.payments import router as payments_router
from app.api.reconciliation import router as reconciliation_router
from app.api.transactions import router as transactions_router
from app.errors import register_error_handlers
from app.logging import configure_logging
from app.observability import ObservabilityMiddleware
from app.websocket.router import router as ws_router

app = FastAPI(title="schoolpay API")
logger = logging.getLogger(__name__)
configure_logging()
app.add_middleware(ObservabilityMiddleware)
register_error_handlers(app)


def _include_api_router(router, dependencies=None):
    app.include_router(router, prefix="/api", dependencies=dependencies)


# Provider callbacks authenticate by signature or callback token, not API key
_include_api_router(mpesa_router)
_include_api_router(bank_webhooks_router)
_include_api_router(payments_router)
_include_api_router(transactions_router)
_include_api_router(reconciliation_router)
_include_api_router(integrations_router)

app.include_router(ws_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@app.on_event("startup")
async def _start_websocket_manager():
    from app.websocket.manager import get_connection_manager
    manager = get_connection_manager()
    await manager.connect()


@app.on_event("shutdown")
async def _stop_websocket_manager():
    from app.websocket.manager import get_connection_manager
    manager = get_connection_manager()
    await manager.disconnect()

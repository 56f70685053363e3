from __future__ import annotations

from fastapi import APIRouter, FastAPI, HTTPException
from fastapi.testclient import TestClient

from app.errors import register_error_handlers
from app.observability import ObservabilityMiddleware
from app.services.payments.errors import PaymentValidationError


def _build_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(ObservabilityMiddleware)
    register_error_handlers(app)

    api_router = APIRouter(prefix="/api")

    @api_router.get("/http-403")
    def api_http_403():
        raise HTTPException(status_code=403, detail="Forbidden api")

    @api_router.get("/structured")
    def api_structured():
        raise HTTPException(
            status_code=409,
            detail={"code": "already_reversed", "message": "Reversed", "details": {"id": 1}},
        )

    @api_router.get("/needs-int")
    def api_needs_int(value: int):
        return {"value": value}

    @api_router.get("/bad-payload")
    def api_bad_payload():
        raise PaymentValidationError("Missing TransID", field="TransID")

    @api_router.get("/crash")
    def api_crash():
        raise RuntimeError("boom")

    app.include_router(api_router)
    return app


def test_http_exception_returns_json() -> None:
    client = TestClient(_build_app(), raise_server_exceptions=False)
    resp = client.get("/api/http-403")
    assert resp.status_code == 403
    body = resp.json()
    assert body["code"] == "http_403"
    assert body["message"] == "Forbidden api"
    assert body["request_id"] == resp.headers["X-Request-ID"]


def test_structured_detail_is_preserved() -> None:
    client = TestClient(_build_app(), raise_server_exceptions=False)
    body = client.get("/api/structured").json()
    assert body["code"] == "already_reversed"
    assert body["details"] == {"id": 1}


def test_request_id_is_echoed() -> None:
    client = TestClient(_build_app(), raise_server_exceptions=False)
    resp = client.get("/api/http-403", headers={"X-Request-ID": "req-123"})
    assert resp.json()["request_id"] == "req-123"
    assert resp.headers["X-Request-ID"] == "req-123"


def test_unknown_route_is_json_404() -> None:
    client = TestClient(_build_app(), raise_server_exceptions=False)
    resp = client.get("/api/missing")
    assert resp.status_code == 404
    assert resp.json()["code"] == "http_404"


def test_validation_error_returns_json() -> None:
    client = TestClient(_build_app(), raise_server_exceptions=False)
    resp = client.get("/api/needs-int", params={"value": "abc"})
    assert resp.status_code == 422
    body = resp.json()
    assert body["code"] == "validation_error"
    assert isinstance(body["details"], list)


def test_payment_validation_error_is_400() -> None:
    client = TestClient(_build_app(), raise_server_exceptions=False)
    resp = client.get("/api/bad-payload")
    assert resp.status_code == 400
    assert resp.json()["code"] == "payment_validation_error"
    assert resp.json()["details"] == {"field": "TransID"}


def test_unhandled_error_is_500_json() -> None:
    client = TestClient(_build_app(), raise_server_exceptions=False)
    resp = client.get("/api/crash")
    assert resp.status_code == 500
    assert resp.json()["code"] == "internal_error"

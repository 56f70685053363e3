import os
import uuid

from cryptography.fernet import Fernet

# Settings are read at import time; point them at throwaway values first.
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")
os.environ.setdefault("CREDENTIAL_ENCRYPTION_KEY", Fernet.generate_key().decode("ascii"))
os.environ.setdefault("PLATFORM_API_KEY", "platform-test-key")

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base
from app.models.tenant import BankProvider
from app.services.payments.notifier import Notifier
from app.services.payments.pipeline import PaymentPipeline, set_pipeline

from tests.factories import (
    OPERATOR_KEY,
    OTHER_OPERATOR_KEY,
    make_account,
    make_integration,
    make_tenant,
)
from tests.mocks import FakePublisher


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def publisher():
    return FakePublisher()


@pytest.fixture()
def notifier(publisher):
    return Notifier(publisher=publisher, autostart=False)


@pytest.fixture()
def pipeline(notifier):
    pipeline = PaymentPipeline(notifier=notifier, budget_seconds=30)
    set_pipeline(pipeline)
    yield pipeline
    set_pipeline(None)


@pytest.fixture()
def tenant(db_session):
    return make_tenant(db_session, "SCH001", operator_key=OPERATOR_KEY)


@pytest.fixture()
def other_tenant(db_session):
    return make_tenant(db_session, "SCH002", operator_key=OTHER_OPERATOR_KEY)


@pytest.fixture()
def account(db_session, tenant):
    return make_account(
        db_session,
        tenant,
        "ADM001",
        name="Jane Wanjiku",
        guardian_phone="0712345678",
    )


@pytest.fixture()
def equity_integration(db_session, tenant):
    return make_integration(db_session, tenant, BankProvider.equity, "1180123456789")


@pytest.fixture()
def unique_id():
    def _make(prefix: str = "TX") -> str:
        return f"{prefix}{uuid.uuid4().hex[:10].upper()}"

    return _make


@pytest.fixture()
def client(db_session, pipeline):
    from fastapi.testclient import TestClient

    from app.db import get_db
    from app.main import app

    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.pop(get_db, None)

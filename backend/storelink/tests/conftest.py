"""
Root test configuration and fixtures.

Provides:
- db_engine / db_session: SQLite in-memory database, rolled back per test
- Factories for tenants, stores and webhook history
- http_response: real httpx.Response objects for mocked provider calls
"""

import os
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Generator

import httpx
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Set test environment before any storelink import reads it
os.environ.setdefault("ENV", "test")
os.environ.setdefault("STORE_ENCRYPTION_KEY", "0123456789abcdef" * 4)
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("FRONTEND_URL", "https://app.test")
os.environ.setdefault("API_BASE_URL", "https://api.app.test")
os.environ.pop("REDIS_URL", None)


@pytest.fixture(scope="session")
def db_engine():
    """SQLite in-memory engine with working SAVEPOINT support."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite defers BEGIN on its own, take over so savepoints behave
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    from storelink.db_base import Base
    from storelink.models import store, tenant, user, webhook_event  # noqa: F401

    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """
    Session joined to an outer transaction that is rolled back after the test.

    commit() and rollback() inside code under test only touch a savepoint.
    """
    connection = db_engine.connect()
    transaction = connection.begin()

    SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=connection,
        join_transaction_mode="create_savepoint",
    )
    session = SessionLocal()

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def session_factory(db_session):
    """Stand-in for session_scope() that hands background jobs the test session."""
    @contextmanager
    def _factory():
        yield db_session
        db_session.flush()
    return _factory


# =============================================================================
# Model factories
# =============================================================================


@pytest.fixture
def make_tenant(db_session):
    from storelink.models import Tenant, TenantStatus

    def _make(email=None, name="Test Tenant", deleted=False):
        tenant = Tenant(
            id=str(uuid.uuid4()),
            name=name,
            email=email or f"owner-{uuid.uuid4().hex[:8]}@example.com",
            status=TenantStatus.ACTIVE,
        )
        if deleted:
            tenant.soft_delete()
        db_session.add(tenant)
        db_session.commit()
        return tenant
    return _make


@pytest.fixture
def make_store(db_session):
    from storelink.models import Store, StorePlatform, StoreStatus
    from storelink.platform.secrets import encrypt_secret

    def _make(
        tenant_id,
        platform=StorePlatform.SALLA,
        merchant_id="1001",
        status=StoreStatus.ACTIVE,
        access_token="access-token",
        refresh_token="refresh-token",
        authorization_token=None,
        expires_in=timedelta(days=7),
        deleted=False,
        name="Existing Store",
    ):
        store = Store(
            tenant_id=tenant_id,
            platform=platform,
            name=name,
            status=status,
            consecutive_errors=0,
            access_token_encrypted=encrypt_secret(access_token),
            refresh_token_encrypted=encrypt_secret(refresh_token),
            authorization_token_encrypted=encrypt_secret(authorization_token),
            token_expires_at=(
                datetime.now(timezone.utc) + expires_in if expires_in is not None else None
            ),
        )
        store.set_merchant_id(merchant_id)
        if deleted:
            store.soft_delete()
        db_session.add(store)
        db_session.commit()
        return store
    return _make


@pytest.fixture
def make_webhook_event(db_session):
    from storelink.models import WebhookEvent, StorePlatform, MERCHANT_HINT_KEY

    def _make(tenant_id, source=StorePlatform.SALLA, merchant_id=None, created_at=None):
        payload = {"event": "order.created"}
        if merchant_id is not None:
            payload[MERCHANT_HINT_KEY] = str(merchant_id)
        webhook_event = WebhookEvent(
            source=source,
            tenant_id=tenant_id,
            event_type="order.created",
            payload=payload,
            created_at=created_at or datetime.now(timezone.utc),
        )
        db_session.add(webhook_event)
        db_session.commit()
        return webhook_event
    return _make


# =============================================================================
# HTTP helpers
# =============================================================================


@pytest.fixture
def http_response():
    """Factory for httpx.Response objects returned by a mocked AsyncClient.request."""
    def _make(status_code=200, json=None, headers=None, method="GET", url="https://provider.test"):
        kwargs = {"headers": headers or {}, "request": httpx.Request(method, url)}
        if json is not None:
            kwargs["json"] = json
        return httpx.Response(status_code, **kwargs)
    return _make


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "security: mark test as security-focused")

"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Mocks all external services.
"""
import os

os.environ.setdefault("APP_SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("NOTIFICATION_WORKER_ENABLED", "false")
os.environ.setdefault("WEBHOOK_LOG_PATH", "")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from unittest.mock import AsyncMock, patch

import httpx
import jwt as pyjwt
import pytest
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.pool import StaticPool

import astra.models  # noqa: F401  (registers every table on Base.metadata)
from astra.config import get_settings
from astra.database import Base
from astra.models.integration import Integration
from astra.models.tenant import Tenant

TENANT_SECRET = "wh_" + "a" * 40
OTHER_TENANT_SECRET = "wh_" + "b" * 40
SHOPIFY_SECRET = "wh_" + "c" * 40
WOO_SECRET = "wh_" + "d" * 40


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture
async def engine():
    """
    In-memory SQLite shared by every session of a test (StaticPool), with
    pysqlite's implicit transaction handling replaced so SAVEPOINTs work.
    """
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)

    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def tenant(db):
    tenant = Tenant(name="Acme Store", email="owner@acme.test", webhook_secret=TENANT_SECRET)
    db.add(tenant)
    await db.commit()
    return tenant


@pytest.fixture
async def other_tenant(db):
    tenant = Tenant(name="Globex", email="owner@globex.test", webhook_secret=OTHER_TENANT_SECRET)
    db.add(tenant)
    await db.commit()
    return tenant


@pytest.fixture
async def admin_tenant(db):
    tenant = Tenant(name="Operator", email="ops@astra.test", is_admin=True)
    db.add(tenant)
    await db.commit()
    return tenant


@pytest.fixture
async def shopify_integration(db, tenant):
    integration = Integration(
        tenant_id=tenant.id, platform="shopify",
        domain="acme.myshopify.com", webhook_secret=SHOPIFY_SECRET,
    )
    db.add(integration)
    await db.commit()
    return integration


@pytest.fixture
async def woo_integration(db, tenant):
    integration = Integration(
        tenant_id=tenant.id, platform="woocommerce",
        domain="shop.acme.test", webhook_secret=WOO_SECRET,
    )
    db.add(integration)
    await db.commit()
    return integration


@pytest.fixture
def mock_redis():
    """Mock for async Redis - prevents real Redis calls in tests."""
    with patch("astra.utils.redis_conn.get_redis") as mock:
        redis_mock = AsyncMock()
        redis_mock.set = AsyncMock(return_value=True)
        redis_mock.ping = AsyncMock(return_value=True)
        redis_mock.lpush = AsyncMock(return_value=1)
        redis_mock.brpop = AsyncMock(return_value=None)
        redis_mock.rpop = AsyncMock(return_value=None)
        redis_mock.get = AsyncMock(return_value=None)
        mock.return_value = redis_mock
        yield redis_mock


@pytest.fixture
def webhook_log(tmp_path):
    from astra.services.webhook_logger import WebhookDiagnosticLogger
    wlog = WebhookDiagnosticLogger(str(tmp_path / "logs" / "webhooks.log"), buffer_size=100)
    yield wlog
    wlog.close()


@pytest.fixture
async def client(db, webhook_log, mock_redis):
    """HTTP client bound to the app, sharing the test session and log."""
    from astra.database import get_db
    from astra.main import app
    from astra.services.webhook_logger import get_webhook_logger

    async def _get_test_db():
        yield db

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_webhook_logger] = lambda: webhook_log
    app.state.notification_worker = None

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.notification_worker = None


def make_token(tenant_id) -> str:
    """Dashboard bearer token as the external auth provider would issue it."""
    settings = get_settings()
    return pyjwt.encode(
        {"tenant_id": str(tenant_id)},
        settings.jwt_secret,
        algorithm="HS256",
    )


def auth_headers(tenant) -> dict:
    return {"Authorization": f"Bearer {make_token(tenant.id)}"}

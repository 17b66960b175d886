"""
Centralized Test Configuration.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from whatprice.app.main import app
from whatprice.app.db.session import Database
from whatprice.app.models.billing_enums import GraduationTier, VerificationStatus, ViewType
from whatprice.app.models.product import Product
from whatprice.app.models.product_view import ProductView
from whatprice.app.models.vendor import Vendor
from whatprice.app.utils.date_utils import utcnow

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


def _enable_sqlite_foreign_keys(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _build_engine(request, tmp_path):
    # Concurrency tests need one connection per session, which the
    # single shared in-memory connection cannot give them.
    if request.node.get_closest_marker("file_database"):
        return create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
            poolclass=NullPool,
        )
    return create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture
async def database(request, tmp_path):
    """Fresh database per test, installed on the app."""
    engine = _build_engine(request, tmp_path)
    event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

    db = Database(engine)
    await db.create_all()
    app.state.database = db

    yield db

    app.state.database = None
    await db.drop_all()
    await db.dispose()


@pytest.fixture
async def client(database):
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session(database):
    async with database.session() as session:
        yield session


@pytest.fixture
def make_vendor(db_session):
    """Create a verified, active vendor. Keyword arguments override columns."""
    async def _make(**overrides):
        now = utcnow()
        values = dict(
            store_name="Hafeez Centre Mobiles",
            verification_status=VerificationStatus.VERIFIED,
            is_active=True,
            view_credits=Decimal("100.00"),
            graduation_tier=GraduationTier.STARTER,
            tier_start_date=now - timedelta(days=10),
            last_daily_reset_at=now,
        )
        values.update(overrides)
        vendor = Vendor(**values)
        db_session.add(vendor)
        await db_session.commit()
        return vendor
    return _make


@pytest.fixture
def make_product(db_session):
    async def _make(vendor, **overrides):
        values = dict(vendor_id=vendor.id, name="Galaxy A15", master_product_id=501)
        values.update(overrides)
        product = Product(**values)
        db_session.add(product)
        await db_session.commit()
        return product
    return _make


@pytest.fixture
def make_view(db_session):
    """Insert a view row directly, bypassing classification."""
    async def _make(product, **overrides):
        now = utcnow()
        values = dict(
            product_id=product.id,
            vendor_id=product.vendor_id,
            master_product_id=product.master_product_id,
            session_id="sess-1",
            view_type=ViewType.DIRECT,
            view_duration=5.0,
            is_qualified_view=True,
            timestamp=now,
            created_at=now,
        )
        values.update(overrides)
        view = ProductView(**values)
        db_session.add(view)
        await db_session.commit()
        return view
    return _make


@pytest.fixture
def reload(db_session):
    """Re-read a row, discarding whatever the test session cached."""
    async def _reload(model, pk):
        return await db_session.get(model, pk, populate_existing=True)
    return _reload

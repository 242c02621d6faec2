"""
Shared fixtures: an in-memory SQLite database per test, fixed production
rules, and an httpx client bound to the FastAPI app.
"""
from datetime import date, timedelta

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from paneltrack import models  # noqa: F401
from paneltrack.api.deps import get_rules
from paneltrack.core.production_rules import ProductionRules
from paneltrack.database import Base, enable_sqlite_savepoints, get_db
from paneltrack.main import app
from paneltrack.schemas.manufacturing_order import ManufacturingOrderCreate
from paneltrack.services.cache_service import reset_cache
from paneltrack.services.event_publisher import reset_event_publisher
from paneltrack.services.manufacturing_order_service import ManufacturingOrderService


@pytest.fixture
def rules():
    """Rule tables pinned to a fixed year window."""
    return ProductionRules(min_production_year=2020, max_production_year=2030)


@pytest.fixture(autouse=True)
def fresh_singletons():
    reset_cache()
    publisher = reset_event_publisher()
    yield publisher
    reset_cache()
    reset_event_publisher()


@pytest.fixture
def publisher(fresh_singletons):
    return fresh_singletons


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory, rules):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_rules] = lambda: rules
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def make_barcode(sequence: int, panel_type: str = "36", year: str = "25", frame: str = "W", backsheet: str = "T") -> str:
    return f"CRS{year}{frame}{backsheet}{panel_type}{sequence:05d}"


@pytest.fixture
def barcode_for():
    return make_barcode


@pytest.fixture
def mo_factory(db_session, rules):
    """Create manufacturing orders with dates inside the accepted window."""
    counter = {"n": 0}

    async def _create(panel_type: str = "36", quantity: int = 5, end_in_days: int = 30, **kwargs):
        counter["n"] += 1
        today = date.today()
        data = ManufacturingOrderCreate(
            order_number=kwargs.pop("order_number", f"MO-TEST-{counter['n']:04d}"),
            panel_type=panel_type,
            quantity=quantity,
            start_date=kwargs.pop("start_date", today - timedelta(days=1)),
            end_date=today + timedelta(days=end_in_days),
            created_by="supervisor-1",
            **kwargs,
        )
        return await ManufacturingOrderService(db_session, rules).create_manufacturing_order(data)

    return _create

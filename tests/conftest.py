import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from database import Base
from services.storage import StorageService, get_storage
from services.upload_cache import UploadCache, get_upload_cache


class FixedClock:
    """Deterministic clock; call advance() to move time forward."""

    def __init__(self, start=datetime(2025, 2, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FixedClock()


@pytest_asyncio.fixture
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def store(test_engine):
    session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    return StorageService(session_factory=session_factory)


@pytest.fixture
def upload_cache(clock):
    return UploadCache(ttl_seconds=1800, clock=clock)


@pytest_asyncio.fixture
async def client(store, upload_cache):
    from main import app

    app.dependency_overrides[get_storage] = lambda: store
    app.dependency_overrides[get_upload_cache] = lambda: upload_cache
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def seed_product(store, msku="MSKU-TSHIRT", name="Cotton T-Shirt", skus=()):
    """Create a product and optionally bind (sku, marketplace) pairs to it."""
    product = await store.create_product({"msku": msku, "name": name, "category": "Apparel"})
    for sku, marketplace in skus:
        await store.create_sku({
            "sku": sku,
            "msku": msku,
            "product_id": product.id,
            "marketplace": marketplace,
        })
    return product

# --- models for the marketplace import service ---

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import (
    String, Text, Integer, DateTime, Boolean, JSON,
    func, Index, UniqueConstraint, CheckConstraint
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.pool import StaticPool
from sqlalchemy import text
from datetime import datetime
from typing import Optional
import logging, os, uuid

# Load environment variables early (before reading DATABASE_URL)
from dotenv import load_dotenv
load_dotenv()

# -------------------------------------------------------------------
# Engine / Session
# -------------------------------------------------------------------
DATABASE_URL = os.getenv("DATABASE_URL", "")

if DATABASE_URL:
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")
    engine = create_async_engine(
        DATABASE_URL,
        echo=os.getenv("NODE_ENV") == "development",
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=1800,
        pool_timeout=15,
    )
else:
    DATABASE_URL = "sqlite+aiosqlite:///:memory:"
    engine = create_async_engine(
        DATABASE_URL,
        echo=os.getenv("NODE_ENV") == "development",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

def _redact_db_url(url: str) -> str:
    if "@" in url and "://" in url:
        head, tail = url.split("://", 1)
        creds, hostpart = tail.split("@", 1)
        if ":" in creds:
            user, _pwd = creds.split(":", 1)
            return f"{head}://{user}:******@{hostpart}"
        return url
    if url.startswith("sqlite"):
        return url
    return "******"

logger = logging.getLogger(__name__)
logger.info(f"Creating SQL engine for { _redact_db_url(DATABASE_URL) }")

async def probe_db_connection():
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("DB connectivity probe: OK")
    except Exception as e:
        logger.exception(f"DB connectivity probe failed: {e}")

# Document-shaped attributes: plain JSON everywhere, JSONB on PostgreSQL
JSONDoc = JSON().with_variant(JSONB(), "postgresql")

# -------------------------------------------------------------------
# Base
# -------------------------------------------------------------------
class Base(DeclarativeBase):
    pass

# -------------------------------------------------------------------
# MODELS
# -------------------------------------------------------------------

def _uuid() -> str:
    return str(uuid.uuid4())


def _default_dimensions() -> dict:
    return {"length": 0, "breadth": 0, "height": 0, "weight": 0}


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    msku: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(Text, nullable=False, default="Uncategorized")
    hsn_code: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    dimensions: Mapped[dict] = mapped_column(JSONDoc, nullable=False, default=_default_dimensions)
    low_stock_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=10)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)


class Sku(Base):
    __tablename__ = "skus"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    sku: Mapped[str] = mapped_column(String, nullable=False)
    # Value reference to products.msku, re-resolved on read
    msku: Mapped[str] = mapped_column(String, nullable=False, index=True)
    product_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    marketplace: Mapped[str] = mapped_column(String, nullable=False)
    marketplace_identifiers: Mapped[dict] = mapped_column(JSONDoc, nullable=False, default=dict)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("sku", "marketplace", name="uq_skus_sku_marketplace"),
        CheckConstraint(
            "marketplace IN ('Amazon','Flipkart','Meesho','Other')",
            name="ck_skus_marketplace",
        ),
    )


class Inventory(Base):
    __tablename__ = "inventory"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    msku: Mapped[str] = mapped_column(String, nullable=False, index=True)
    sku: Mapped[str] = mapped_column(String, nullable=False)
    marketplace: Mapped[str] = mapped_column(String, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    location: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    fulfillment_center: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # [{date, adjustment, reason, newQuantity}, ...] oldest first
    history: Mapped[list] = mapped_column(JSONDoc, nullable=False, default=list)
    last_updated: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("msku", "sku", "marketplace", name="uq_inventory_msku_sku_marketplace"),
        CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
    )


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    order_id: Mapped[str] = mapped_column(String, nullable=False)
    order_item_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    marketplace: Mapped[str] = mapped_column(String, nullable=False)
    order_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="Pending")

    customer: Mapped[dict] = mapped_column(JSONDoc, nullable=False, default=dict)
    items: Mapped[list] = mapped_column(JSONDoc, nullable=False, default=list)
    shipping: Mapped[dict] = mapped_column(JSONDoc, nullable=False, default=dict)
    payment: Mapped[dict] = mapped_column(JSONDoc, nullable=False, default=dict)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    raw_data: Mapped[Optional[dict]] = mapped_column(JSONDoc, nullable=True)
    status_history: Mapped[list] = mapped_column(JSONDoc, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("order_id", "marketplace", name="uq_orders_order_id_marketplace"),
    )

# -------------------------------------------------------------------
# Indexes
# -------------------------------------------------------------------
Index('ix_inventory_sku_marketplace', Inventory.sku, Inventory.marketplace)
Index('ix_orders_order_id', Order.order_id)
Index('ix_orders_order_date', Order.order_date)
Index('ix_orders_status', Order.status)
# -------------------------------------------------------------------
# init helpers
# -------------------------------------------------------------------
async def init_db():
    """Ensure tables exist."""
    await probe_db_connection()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("DB init complete (tables ensured).")

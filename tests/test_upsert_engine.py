import sys
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from conftest import seed_product
from services.field_mapper import (
    CanonicalInventoryRow,
    CanonicalLineItem,
    CanonicalOrderRow,
    CanonicalProductRow,
)
from services.sku_resolver import ResolutionLog, SkuResolution
from services.upsert_engine import UpsertEngine, UpsertOutcome


def _order_row(order_id="402-1", marketplace="Amazon", price="250", quantity=2, total=None):
    return CanonicalOrderRow(
        order_id=order_id,
        marketplace=marketplace,
        order_date=datetime(2025, 1, 10),
        status="Shipped",
        customer={"name": "Amazon Customer"},
        items=[CanonicalLineItem(sku="AMZ-1", name="Tee", quantity=quantity, price=Decimal(price))],
        shipping={},
        order_total=total,
    )


@pytest.mark.asyncio
async def test_order_created_once_then_skipped(store, clock):
    engine = UpsertEngine(store, clock=clock)
    resolution = SkuResolution(msku="MSKU-A", product_id="p1", product_name="Tee")

    assert await engine.upsert_order(_order_row(), [resolution]) == UpsertOutcome.CREATED
    assert await engine.upsert_order(_order_row(price="999"), [resolution]) == UpsertOutcome.SKIPPED

    order = await store.find_order("402-1")
    assert order.payment["amount"] == 500.0
    assert order.payment["currency"] == "INR"
    assert order.customer["country"] == "India"
    assert order.items[0]["msku"] == "MSKU-A"
    assert order.status_history[0]["status"] == "Shipped"


@pytest.mark.asyncio
async def test_unresolved_item_stored_as_unmapped(store, clock):
    engine = UpsertEngine(store, clock=clock)
    await engine.upsert_order(_order_row(order_id="402-2"), [None])

    order = await store.find_order("402-2")
    assert order.items[0]["msku"] == "UNMAPPED"
    assert order.items[0]["product"] is None


@pytest.mark.asyncio
async def test_explicit_order_total_overrides_computed(store, clock):
    engine = UpsertEngine(store, clock=clock)
    await engine.upsert_order(_order_row(order_id="402-3", total=Decimal("480")), [None])

    order = await store.find_order("402-3")
    assert order.payment["amount"] == 480.0


@pytest.mark.asyncio
async def test_order_id_scope_per_marketplace(store, clock):
    global_engine = UpsertEngine(store, order_id_scope="order_id", clock=clock)
    scoped_engine = UpsertEngine(store, order_id_scope="order_id_marketplace", clock=clock)

    await global_engine.upsert_order(_order_row(order_id="SAME", marketplace="Amazon"), [None])

    assert await global_engine.upsert_order(_order_row(order_id="SAME", marketplace="Meesho"), [None]) == UpsertOutcome.SKIPPED
    assert await scoped_engine.upsert_order(_order_row(order_id="SAME", marketplace="Meesho"), [None]) == UpsertOutcome.CREATED


@pytest.mark.asyncio
async def test_inventory_replaces_quantity_and_records_history(store, clock):
    engine = UpsertEngine(store, clock=clock)
    row = CanonicalInventoryRow(sku="AMZ-1", marketplace="Amazon", quantity=10)

    assert await engine.upsert_inventory(row, "MSKU-A") == UpsertOutcome.CREATED
    clock.advance(60)
    row.quantity = 4
    assert await engine.upsert_inventory(row, "MSKU-A") == UpsertOutcome.UPDATED

    record = await store.find_inventory("AMZ-1", "Amazon")
    assert record.quantity == 4
    assert record.last_updated == clock.now
    assert [h["adjustment"] for h in record.history] == [10, -6]
    assert record.history[-1]["newQuantity"] == 4


@pytest.mark.asyncio
async def test_inventory_adopts_resolved_msku(store, clock):
    engine = UpsertEngine(store, clock=clock)
    row = CanonicalInventoryRow(sku="AMZ-7", marketplace="Amazon", quantity=3)
    await engine.upsert_inventory(row, "UNMAPPED")
    await engine.upsert_inventory(row, "MSKU-A")

    records = await store.list_inventory()
    assert len(records) == 1
    assert records[0].msku == "MSKU-A"


@pytest.mark.asyncio
async def test_product_merge_keeps_existing_values(store, clock):
    engine = UpsertEngine(store, clock=clock)
    first = CanonicalProductRow(
        msku="MSKU-A", name="Tee", marketplace="Amazon",
        description="Soft cotton", category=None, dimensions={"weight": 0.2},
    )
    assert await engine.upsert_product(first) == UpsertOutcome.CREATED
    product = await store.find_product("MSKU-A")
    assert product.category == "Uncategorized"
    assert product.dimensions["weight"] == 0.2

    second = CanonicalProductRow(msku="MSKU-A", name="Tee v2", marketplace="Amazon", category="Apparel")
    assert await engine.upsert_product(second) == UpsertOutcome.UPDATED

    product = await store.find_product("MSKU-A")
    assert product.name == "Tee v2"
    assert product.category == "Apparel"
    assert product.description == "Soft cotton"
    assert product.dimensions["weight"] == 0.2


@pytest.mark.asyncio
async def test_product_row_with_sku_creates_binding_once(store, clock):
    engine = UpsertEngine(store, clock=clock)
    log = ResolutionLog()
    row = CanonicalProductRow(msku="MSKU-B", name="Mug", marketplace="Meesho", sku="MEE-MUG", quantity=7)

    await engine.upsert_product(row, log)
    await engine.upsert_product(row, log)

    assert len(await store.list_skus(msku="MSKU-B")) == 1
    inventory = await store.find_inventory("MEE-MUG", "Meesho")
    assert inventory.quantity == 7
    assert log.new_skus == [{"sku": "MEE-MUG", "msku": "MSKU-B", "marketplace": "Meesho"}]


@pytest.mark.asyncio
async def test_product_row_keeps_existing_binding(store, clock):
    await seed_product(store, msku="MSKU-A", skus=[("AMZ-1", "Amazon")])
    engine = UpsertEngine(store, clock=clock)
    log = ResolutionLog()

    await engine.upsert_product(CanonicalProductRow(msku="MSKU-Z", name="Other", marketplace="Amazon", sku="AMZ-1"), log)

    binding = await store.find_sku("AMZ-1", "Amazon")
    assert binding.msku == "MSKU-A"
    assert log.new_skus == []

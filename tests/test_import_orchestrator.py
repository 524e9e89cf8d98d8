import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from conftest import seed_product
from services.import_errors import (
    EmptyImportFileError,
    InvalidImportTypeError,
    MissingImportParameterError,
    StorageUnavailableError,
    UnsupportedMarketplaceError,
)
from services.import_orchestrator import ImportOrchestrator
from utils import utc_now


AMAZON_ORDERS = (
    "AmazonOrderId,PurchaseDate,OrderStatus,SellerSKU,ProductName,QuantityOrdered,ItemPrice\n"
    "402-001,2025-01-10T08:00:00Z,Shipped,AMZ-TEE,Tee,2,250\n"
    "402-002,2025-01-11T08:00:00Z,Pending,AMZ-MUG,Mug,1,199.5\n"
    "402-003,2025-01-12T08:00:00Z,Delivered,AMZ-GHOST,Ghost,3,100\n"
)

AMAZON_REPORT_ORDERS = (
    "order-id, sku, purchase-date, quantity, item-price, order-status\n"
    "402-001, AMZ-TEE, 2025-01-10T08:00:00Z, 2, 250, Shipped\n"
    "402-002, AMZ-MUG, 2025-01-11T08:00:00Z, 1, 199.5, Pending\n"
    "402-003, AMZ-GHOST, 2025-01-12T08:00:00Z, 3, 100, Delivered\n"
)


async def _seed_catalog(store):
    await seed_product(store, msku="MSKU-TEE", name="Tee", skus=[("AMZ-TEE", "Amazon")])
    await seed_product(store, msku="MSKU-MUG", name="Mug", skus=[("AMZ-MUG", "Amazon")])


@pytest.mark.asyncio
@pytest.mark.parametrize("content", [AMAZON_ORDERS, AMAZON_REPORT_ORDERS], ids=["api-headers", "report-headers"])
async def test_amazon_orders_end_to_end(store, clock, content):
    await _seed_catalog(store)
    summary = await ImportOrchestrator(store, clock=clock).run_import(content, "Amazon", "orders")

    assert summary.total == 3
    assert summary.processed == 2
    assert summary.flagged == 1
    assert summary.failed == 0
    assert summary.unmapped_skus == ["AMZ-GHOST"]

    tee = await store.find_order("402-001")
    assert tee.payment["amount"] == 500.0
    assert tee.items[0]["msku"] == "MSKU-TEE"
    mug = await store.find_order("402-002")
    assert mug.payment["amount"] == 199.5
    assert mug.status == "Processing"
    ghost = await store.find_order("402-003")
    assert ghost.items[0]["msku"] == "UNMAPPED"


@pytest.mark.asyncio
async def test_reimport_skips_every_previously_processed_order(store, clock):
    await _seed_catalog(store)
    orchestrator = ImportOrchestrator(store, clock=clock)

    first = await orchestrator.run_import(AMAZON_ORDERS, "Amazon", "orders")
    second = await orchestrator.run_import(AMAZON_ORDERS, "Amazon", "orders")

    assert second.skipped == first.processed + first.flagged
    assert second.processed == 0
    orders, total = await store.list_orders()
    assert total == 3


@pytest.mark.asyncio
async def test_mappings_bind_new_skus(store, clock):
    await _seed_catalog(store)
    await seed_product(store, msku="MSKU-GHOST", name="Ghost")

    summary = await ImportOrchestrator(store, clock=clock).run_import(
        AMAZON_ORDERS, "amazon", "auto", mappings={"AMZ-GHOST": "MSKU-GHOST"}
    )

    assert summary.import_type == "orders"
    assert summary.processed == 3
    assert summary.unmapped_skus == []
    assert summary.new_skus == [{"sku": "AMZ-GHOST", "msku": "MSKU-GHOST", "marketplace": "Amazon"}]


@pytest.mark.asyncio
async def test_rows_without_order_id_are_skipped(store, clock):
    content = "Sub Order No,SKU,Quantity,Product Price\n,M-1,1,10\nS-2,M-1,1,10\n"
    summary = await ImportOrchestrator(store, clock=clock).run_import(content, "Meesho", "orders")

    assert summary.total == 2
    assert summary.skipped == 1
    assert summary.flagged == 1
    assert summary.unmapped_skus == ["M-1"]


@pytest.mark.asyncio
async def test_order_rows_without_sku_are_skipped(store, clock):
    content = "AmazonOrderId,SellerSKU,QuantityOrdered,ItemPrice\n402-9,,1,10\n"
    summary = await ImportOrchestrator(store, clock=clock).run_import(content, "Amazon", "orders")

    assert (summary.total, summary.processed, summary.skipped, summary.flagged) == (1, 0, 1, 0)
    assert summary.unmapped_skus == []
    assert await store.find_order("402-9") is None


@pytest.mark.asyncio
async def test_row_failure_does_not_abort_the_batch(store, clock, monkeypatch):
    await _seed_catalog(store)
    original = store.create_order

    async def flaky_create_order(data):
        if data["order_id"] == "402-002":
            raise RuntimeError("constraint violated")
        return await original(data)

    monkeypatch.setattr(store, "create_order", flaky_create_order)
    summary = await ImportOrchestrator(store, clock=clock).run_import(AMAZON_ORDERS, "Amazon", "orders")

    assert summary.failed == 1
    assert summary.errors == [{"row": 3, "message": "constraint violated"}]
    assert summary.processed + summary.flagged + summary.skipped + summary.failed == summary.total
    assert await store.find_order("402-003") is not None


@pytest.mark.asyncio
async def test_inventory_import_flags_unmapped_then_adopts_mapping(store, clock):
    await seed_product(store, msku="MSKU-TEE", name="Tee")
    content = "SKU,Available Quantity\nFK-TEE,12\n"
    orchestrator = ImportOrchestrator(store, clock=clock)

    first = await orchestrator.run_import(content, "Flipkart", "inventory")
    assert first.flagged == 1
    assert (await store.find_inventory("FK-TEE", "Flipkart")).msku == "UNMAPPED"

    second = await orchestrator.run_import(content, "Flipkart", "inventory", mappings={"FK-TEE": "MSKU-TEE"})
    assert second.processed == 1
    record = await store.find_inventory("FK-TEE", "Flipkart")
    assert record.msku == "MSKU-TEE"
    assert record.quantity == 12


@pytest.mark.asyncio
async def test_products_import_creates_products_and_bindings(store, clock):
    content = (
        "SKU,Product Title,Category,Available Quantity\n"
        "fk-tee-red,Red Tee,Apparel,5\n"
        "fk-mug,Mug,,2\n"
        "fk-nameless,,Misc,1\n"
    )
    summary = await ImportOrchestrator(store, clock=clock).run_import(content, "Flipkart", "products")

    assert summary.processed == 2
    assert summary.skipped == 1
    mug = await store.find_product("FK-MUG")
    assert mug.category == "Uncategorized"
    assert (await store.find_inventory("fk-tee-red", "Flipkart")).quantity == 5
    assert [s["sku"] for s in summary.new_skus] == ["fk-tee-red", "fk-mug"]


@pytest.mark.asyncio
async def test_header_only_file_is_fatal(store):
    with pytest.raises(EmptyImportFileError):
        await ImportOrchestrator(store).run_import("AmazonOrderId,SellerSKU\n", "Amazon", "orders")
    with pytest.raises(EmptyImportFileError):
        await ImportOrchestrator(store).run_import("   ", "Amazon", "orders")


@pytest.mark.asyncio
async def test_missing_parameters_are_fatal(store):
    with pytest.raises(MissingImportParameterError):
        await ImportOrchestrator(store).run_import(AMAZON_ORDERS, "", "orders")
    with pytest.raises(MissingImportParameterError):
        await ImportOrchestrator(store).run_import(None, "Amazon", "orders")


@pytest.mark.asyncio
async def test_bad_marketplace_and_import_type(store):
    with pytest.raises(UnsupportedMarketplaceError):
        await ImportOrchestrator(store).run_import(AMAZON_ORDERS, "Shopify", "orders")
    with pytest.raises(InvalidImportTypeError):
        await ImportOrchestrator(store).run_import(AMAZON_ORDERS, "Amazon", "returns")


@pytest.mark.asyncio
async def test_storage_unavailable_is_fatal(store):
    async def broken_ping():
        raise RuntimeError("no route to database")

    store.ping = broken_ping
    with pytest.raises(StorageUnavailableError):
        await ImportOrchestrator(store).run_import(AMAZON_ORDERS, "Amazon", "orders")


@pytest.mark.asyncio
async def test_undated_orders_fall_back_to_utc_receipt_time(store):
    content = "AmazonOrderId,SellerSKU,PurchaseDate\n402-7,AMZ-X,garbage\n402-8,AMZ-X,2025-01-10T08:00:00+05:30\n"
    before = datetime.now(timezone.utc).replace(tzinfo=None)
    await ImportOrchestrator(store).run_import(content, "Amazon", "orders")
    after = datetime.now(timezone.utc).replace(tzinfo=None)

    undated = await store.find_order("402-7")
    assert before - timedelta(seconds=1) <= undated.order_date <= after + timedelta(seconds=1)
    dated = await store.find_order("402-8")
    assert dated.order_date == datetime(2025, 1, 10, 2, 30)


def test_default_clock_is_naive_utc():
    assert ImportOrchestrator(None).clock is utc_now
    assert utc_now().tzinfo is None

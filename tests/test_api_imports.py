import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from conftest import seed_product


FLIPKART_ORDERS = (
    "Order Id,ORDER ITEM ID,Ordered On,Order State,SKU,Product,Quantity,Selling Price Per Item,FSN,Shipment ID\n"
    "OD101,I1,25-Jan-25,SHIPPED,FK-TEE,Tee,2,300,FSN1,SH1\n"
    "OD102,I2,26-Jan-25,RETURN_REQUESTED,FK-MUG,Mug,1,150,FSN2,SH2\n"
)


async def _upload(client, name="flipkart_orders.csv", content=FLIPKART_ORDERS):
    resp = await client.post("/api/import/upload", files={"file": (name, content.encode("utf-8"), "text/csv")})
    assert resp.status_code == 200
    return resp.json()["fileId"]


@pytest.mark.asyncio
async def test_upload_detect_process_flow(client, store):
    await seed_product(store, msku="MSKU-TEE", name="Tee", skus=[("FK-TEE", "Flipkart")])
    file_id = await _upload(client)

    detected = await client.post("/api/import/detect", json={"fileId": file_id})
    assert detected.status_code == 200
    body = detected.json()
    assert body["marketplace"] == "Flipkart"
    assert body["confidence"] >= 0.8
    assert body["suggestedImportType"] == "orders"
    assert len(body["sampleRows"]) == 2

    processed = await client.post(
        "/api/import/process",
        json={"fileId": file_id, "marketplace": "Flipkart", "importType": "orders"},
    )
    assert processed.status_code == 200
    results = processed.json()["results"]
    assert results["total"] == 2
    assert results["processed"] == 1
    assert results["flagged"] == 1
    assert results["unmappedSkus"] == ["FK-MUG"]

    listed = await client.get("/api/orders", params={"marketplace": "flipkart", "status": "Return Requested"})
    orders = listed.json()["orders"]
    assert [o["orderId"] for o in orders] == ["OD102"]
    assert orders[0]["orderDate"].startswith("2025-01-26")


@pytest.mark.asyncio
async def test_processed_file_is_discarded(client):
    file_id = await _upload(client)
    first = await client.post("/api/import/process", json={"fileId": file_id, "marketplace": "Flipkart"})
    assert first.status_code == 200

    again = await client.post("/api/import/process", json={"fileId": file_id, "marketplace": "Flipkart"})
    assert again.status_code == 404


@pytest.mark.asyncio
async def test_upload_rejects_non_csv(client):
    resp = await client.post("/api/import/upload", files={"file": ("orders.xlsx", b"abc", "application/octet-stream")})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Only CSV files are allowed"


@pytest.mark.asyncio
async def test_process_requires_marketplace(client):
    file_id = await _upload(client)
    resp = await client.post("/api/import/process", json={"fileId": file_id})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_process_header_only_file_is_400(client):
    file_id = await _upload(client, content="Order Id,SKU\n")
    resp = await client.post("/api/import/process", json={"fileId": file_id, "marketplace": "Flipkart"})
    assert resp.status_code == 400
    assert "no data rows" in resp.json()["error"]


@pytest.mark.asyncio
async def test_process_unknown_file_is_404(client):
    resp = await client.post("/api/import/process", json={"fileId": "nope", "marketplace": "Amazon"})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_order_status_update_appends_history(client, store):
    file_id = await _upload(client)
    await client.post("/api/import/process", json={"fileId": file_id, "marketplace": "Flipkart"})
    order = await store.find_order("OD101")

    resp = await client.put(f"/api/orders/{order.id}/status", json={"status": "Delivered"})
    assert resp.status_code == 200
    history = resp.json()["statusHistory"]
    assert [h["status"] for h in history] == ["Shipped", "Delivered"]

    same = await client.put(f"/api/orders/{order.id}/status", json={"status": "Delivered"})
    assert len(same.json()["statusHistory"]) == 2


@pytest.mark.asyncio
async def test_product_msku_rename_propagates(client, store):
    product = await seed_product(store, msku="OLD-1", name="Tee", skus=[("AMZ-1", "Amazon")])
    await store.create_inventory({"msku": "OLD-1", "sku": "AMZ-1", "marketplace": "Amazon", "quantity": 4, "history": []})

    resp = await client.put(f"/api/products/{product.id}", json={"msku": "NEW-1"})
    assert resp.status_code == 200
    assert (await store.find_sku("AMZ-1", "Amazon")).msku == "NEW-1"
    assert (await store.find_inventory("AMZ-1", "Amazon")).msku == "NEW-1"

    detail = await client.get(f"/api/products/{product.id}")
    assert detail.json()["stock"] == {"total": 4, "byMarketplace": {"Amazon": 4}, "lowStock": True}


@pytest.mark.asyncio
async def test_inventory_adjust_endpoint_clamps(client, store):
    record = await store.create_inventory({"msku": "M", "sku": "S", "marketplace": "Meesho", "quantity": 10, "history": []})

    resp = await client.post(f"/api/inventory/{record.id}/adjust", json={"type": "remove", "adjustment": 50})
    assert resp.status_code == 200
    assert resp.json()["quantity"] == 0

    bad = await client.post(f"/api/inventory/{record.id}/adjust", json={"type": "zap", "adjustment": 1})
    assert bad.status_code == 400


@pytest.mark.asyncio
async def test_create_sku_requires_existing_product(client, store):
    missing = await client.post("/api/skus", json={"sku": "A-1", "msku": "NOPE", "marketplace": "Amazon"})
    assert missing.status_code == 404

    await seed_product(store, msku="MSKU-A")
    created = await client.post("/api/skus", json={"sku": "A-1", "msku": "MSKU-A", "marketplace": "amazon"})
    assert created.status_code == 201
    assert created.json()["marketplace"] == "Amazon"
    assert (await store.find_inventory("A-1", "Amazon")).quantity == 0

"""
SKU Router
Marketplace SKU -> MSKU bindings
"""
from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel
from typing import Dict, List, Optional
import logging

from schemas import serialize_inventory, serialize_sku
from services.storage import StorageService, get_storage
from settings import MARKETPLACES, normalize_marketplace
from utils import utc_now

logger = logging.getLogger(__name__)
router = APIRouter()

SKU_MARKETPLACES = MARKETPLACES + ("Other",)


class SkuRequest(BaseModel):
    sku: str
    msku: str
    marketplace: str
    marketplaceIdentifiers: Optional[Dict[str, str]] = None
    active: Optional[bool] = True


class SkuUpdateRequest(BaseModel):
    msku: Optional[str] = None
    marketplaceIdentifiers: Optional[Dict[str, str]] = None
    active: Optional[bool] = None


class BulkSkuRequest(BaseModel):
    skus: List[SkuRequest]


def _marketplace_or_400(value: str) -> str:
    marketplace = normalize_marketplace(value)
    if marketplace not in SKU_MARKETPLACES:
        raise HTTPException(status_code=400, detail=f"Marketplace must be one of: {', '.join(SKU_MARKETPLACES)}")
    return marketplace


async def _create_binding(store: StorageService, request: SkuRequest):
    """Create a SKU for an existing product plus its zero-stock inventory row"""
    marketplace = _marketplace_or_400(request.marketplace)
    product = await store.find_product(request.msku.strip())
    if not product:
        raise HTTPException(status_code=404, detail=f"Product with MSKU {request.msku} not found")
    if await store.find_sku(request.sku.strip(), marketplace):
        raise HTTPException(status_code=400, detail=f"SKU {request.sku} already exists for {marketplace}")

    sku = await store.create_sku({
        "sku": request.sku.strip(),
        "msku": product.msku,
        "product_id": product.id,
        "marketplace": marketplace,
        "marketplace_identifiers": request.marketplaceIdentifiers or {},
        "active": True if request.active is None else request.active,
    })
    if not await store.find_inventory(sku.sku, marketplace):
        await store.create_inventory({
            "msku": product.msku,
            "sku": sku.sku,
            "marketplace": marketplace,
            "quantity": 0,
            "history": [],
            "last_updated": utc_now(),
        })
    return sku


async def _apply_update(store: StorageService, sku, msku: Optional[str],
                        identifiers: Optional[Dict[str, str]], active: Optional[bool]):
    updates = {}
    if msku and msku.strip() != sku.msku:
        product = await store.find_product(msku.strip())
        if not product:
            raise HTTPException(status_code=404, detail=f"Product with MSKU {msku} not found")
        updates["msku"] = product.msku
        updates["product_id"] = product.id
    if identifiers is not None:
        merged = dict(sku.marketplace_identifiers or {})
        merged.update(identifiers)
        updates["marketplace_identifiers"] = merged
    if active is not None:
        updates["active"] = active
    if not updates:
        return sku

    updated = await store.update_sku(sku.id, updates)
    # Keep the inventory row pointed at the same master SKU
    if "msku" in updates:
        inventory = await store.find_inventory(sku.sku, sku.marketplace)
        if inventory:
            await store.update_inventory(inventory.id, {"msku": updates["msku"]})
    return updated


@router.get("/skus")
async def list_skus(
    msku: Optional[str] = None,
    marketplace: Optional[str] = None,
    store: StorageService = Depends(get_storage),
):
    try:
        skus = await store.list_skus(msku=msku, marketplace=normalize_marketplace(marketplace))
        return [serialize_sku(s) for s in skus]
    except Exception as e:
        logger.error(f"List SKUs error: {e}")
        raise HTTPException(status_code=500, detail="Failed to list SKUs")


@router.get("/skus/{sku_id}")
async def get_sku(sku_id: str, store: StorageService = Depends(get_storage)):
    try:
        sku = await store.get_sku(sku_id)
        if not sku:
            raise HTTPException(status_code=404, detail="SKU not found")
        payload = serialize_sku(sku)
        inventory = await store.find_inventory(sku.sku, sku.marketplace)
        payload["inventory"] = serialize_inventory(inventory) if inventory else None
        return payload
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Get SKU error: {e}")
        raise HTTPException(status_code=500, detail="Failed to get SKU")


@router.post("/skus", status_code=201)
async def create_sku(request: SkuRequest, store: StorageService = Depends(get_storage)):
    try:
        sku = await _create_binding(store, request)
        logger.info(f"Created SKU {sku.sku} ({sku.marketplace}) -> {sku.msku}")
        return serialize_sku(sku)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Create SKU error: {e}")
        raise HTTPException(status_code=500, detail="Failed to create SKU")


@router.put("/skus/{sku_id}")
async def update_sku(sku_id: str, request: SkuUpdateRequest, store: StorageService = Depends(get_storage)):
    try:
        sku = await store.get_sku(sku_id)
        if not sku:
            raise HTTPException(status_code=404, detail="SKU not found")
        updated = await _apply_update(store, sku, request.msku, request.marketplaceIdentifiers, request.active)
        return serialize_sku(updated)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Update SKU error: {e}")
        raise HTTPException(status_code=500, detail="Failed to update SKU")


@router.delete("/skus/{sku_id}")
async def delete_sku(sku_id: str, store: StorageService = Depends(get_storage)):
    try:
        if not await store.delete_sku(sku_id):
            raise HTTPException(status_code=404, detail="SKU not found")
        return {"success": True}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Delete SKU error: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete SKU")


@router.post("/skus/bulk")
async def bulk_upsert_skus(request: BulkSkuRequest, store: StorageService = Depends(get_storage)):
    """Create missing bindings and update existing ones; each item is independent"""
    results = {"total": len(request.skus), "created": 0, "updated": 0, "failed": 0, "errors": []}
    for item in request.skus:
        try:
            marketplace = _marketplace_or_400(item.marketplace)
            existing = await store.find_sku(item.sku.strip(), marketplace)
            if existing:
                await _apply_update(store, existing, item.msku, item.marketplaceIdentifiers, item.active)
                results["updated"] += 1
            else:
                await _create_binding(store, item)
                results["created"] += 1
        except HTTPException as he:
            results["failed"] += 1
            results["errors"].append({"sku": item.sku, "message": he.detail})
        except Exception as e:
            logger.warning(f"Bulk SKU upsert failed for {item.sku}: {e}")
            results["failed"] += 1
            results["errors"].append({"sku": item.sku, "message": str(e)})
    return results

"""
Inventory Router
Stock levels, manual adjustments and bulk updates
"""
from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel
from typing import Any, Dict, List, Optional
from collections import defaultdict
import logging

from schemas import serialize_inventory
from services.inventory_adjustments import InventoryAdjuster, InventoryAdjustmentError
from services.storage import StorageService, get_storage
from settings import LOW_STOCK_THRESHOLD_DEFAULT, normalize_marketplace

logger = logging.getLogger(__name__)
router = APIRouter()


class AdjustRequest(BaseModel):
    type: str
    adjustment: int
    reason: Optional[str] = None


class SetQuantityRequest(BaseModel):
    quantity: int
    reason: Optional[str] = None


class BulkInventoryRequest(BaseModel):
    items: List[Dict[str, Any]]


@router.get("/inventory")
async def list_inventory(
    msku: Optional[str] = None,
    marketplace: Optional[str] = None,
    store: StorageService = Depends(get_storage),
):
    try:
        records = await store.list_inventory(msku=msku, marketplace=normalize_marketplace(marketplace))
        return [serialize_inventory(r) for r in records]
    except Exception as e:
        logger.error(f"List inventory error: {e}")
        raise HTTPException(status_code=500, detail="Failed to list inventory")


@router.get("/inventory/summary")
async def inventory_summary(store: StorageService = Depends(get_storage)):
    """Total stock per MSKU with a low-stock flag against the product threshold"""
    try:
        records = await store.list_inventory()
        totals: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        for record in records:
            totals[record.msku][record.marketplace] += record.quantity

        summary = []
        for msku, by_marketplace in totals.items():
            product = await store.find_product(msku)
            threshold = product.low_stock_threshold if product else LOW_STOCK_THRESHOLD_DEFAULT
            total = sum(by_marketplace.values())
            summary.append({
                "msku": msku,
                "name": product.name if product else None,
                "total": total,
                "byMarketplace": dict(by_marketplace),
                "lowStockThreshold": threshold,
                "lowStock": total <= threshold,
            })
        return summary
    except Exception as e:
        logger.error(f"Inventory summary error: {e}")
        raise HTTPException(status_code=500, detail="Failed to summarize inventory")


@router.get("/inventory/{inventory_id}")
async def get_inventory(inventory_id: str, store: StorageService = Depends(get_storage)):
    try:
        record = await store.get_inventory(inventory_id)
        if not record:
            raise HTTPException(status_code=404, detail="Inventory record not found")
        return serialize_inventory(record, include_history=True)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Get inventory error: {e}")
        raise HTTPException(status_code=500, detail="Failed to get inventory")


@router.post("/inventory/{inventory_id}/adjust")
async def adjust_inventory(
    inventory_id: str,
    request: AdjustRequest,
    store: StorageService = Depends(get_storage),
):
    try:
        record = await InventoryAdjuster(store).adjust(
            inventory_id, request.type, request.adjustment, request.reason
        )
        if not record:
            raise HTTPException(status_code=404, detail="Inventory record not found")
        return serialize_inventory(record, include_history=True)
    except HTTPException:
        raise
    except InventoryAdjustmentError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Adjust inventory error: {e}")
        raise HTTPException(status_code=500, detail="Failed to adjust inventory")


@router.put("/inventory/{inventory_id}")
async def set_inventory(
    inventory_id: str,
    request: SetQuantityRequest,
    store: StorageService = Depends(get_storage),
):
    try:
        record = await InventoryAdjuster(store).set_quantity(inventory_id, request.quantity, request.reason)
        if not record:
            raise HTTPException(status_code=404, detail="Inventory record not found")
        return serialize_inventory(record, include_history=True)
    except HTTPException:
        raise
    except InventoryAdjustmentError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Set inventory error: {e}")
        raise HTTPException(status_code=500, detail="Failed to update inventory")


@router.post("/inventory/bulk")
async def bulk_update_inventory(request: BulkInventoryRequest, store: StorageService = Depends(get_storage)):
    try:
        return await InventoryAdjuster(store).bulk_update(request.items)
    except Exception as e:
        logger.error(f"Bulk inventory error: {e}")
        raise HTTPException(status_code=500, detail="Failed to update inventory")

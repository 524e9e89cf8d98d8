"""
Products Router
Master catalog (MSKU) management
"""
from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel
from typing import Dict, Optional
from collections import defaultdict
import logging

from schemas import serialize_product, serialize_sku
from services.storage import StorageService, get_storage
from settings import LOW_STOCK_THRESHOLD_DEFAULT

logger = logging.getLogger(__name__)
router = APIRouter()


class ProductRequest(BaseModel):
    msku: str
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    hsnCode: Optional[str] = None
    dimensions: Optional[Dict[str, float]] = None
    lowStockThreshold: Optional[int] = None


class ProductUpdateRequest(BaseModel):
    msku: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    hsnCode: Optional[str] = None
    dimensions: Optional[Dict[str, float]] = None
    lowStockThreshold: Optional[int] = None


def _to_columns(payload: Dict) -> Dict:
    mapping = {"hsnCode": "hsn_code", "lowStockThreshold": "low_stock_threshold"}
    return {mapping.get(k, k): v for k, v in payload.items()}


@router.get("/products")
async def list_products(
    search: Optional[str] = None,
    category: Optional[str] = None,
    store: StorageService = Depends(get_storage),
):
    try:
        products = await store.list_products(search=search, category=category)
        return [serialize_product(p) for p in products]
    except Exception as e:
        logger.error(f"List products error: {e}")
        raise HTTPException(status_code=500, detail="Failed to list products")


@router.get("/products/{product_id}")
async def get_product(product_id: str, store: StorageService = Depends(get_storage)):
    """Product with its marketplace SKUs and stock per marketplace"""
    try:
        product = await store.get_product(product_id)
        if not product:
            raise HTTPException(status_code=404, detail="Product not found")

        skus = await store.list_skus(msku=product.msku)
        inventory = await store.list_inventory(msku=product.msku)
        by_marketplace: Dict[str, int] = defaultdict(int)
        for record in inventory:
            by_marketplace[record.marketplace] += record.quantity
        total = sum(by_marketplace.values())

        payload = serialize_product(product)
        payload["skus"] = [serialize_sku(s) for s in skus]
        payload["stock"] = {
            "total": total,
            "byMarketplace": dict(by_marketplace),
            "lowStock": total <= product.low_stock_threshold,
        }
        return payload
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Get product error: {e}")
        raise HTTPException(status_code=500, detail="Failed to get product")


@router.post("/products", status_code=201)
async def create_product(request: ProductRequest, store: StorageService = Depends(get_storage)):
    try:
        msku = request.msku.strip()
        if not msku or not request.name.strip():
            raise HTTPException(status_code=400, detail="msku and name are required")
        if await store.find_product(msku):
            raise HTTPException(status_code=400, detail=f"Product with MSKU {msku} already exists")

        data = _to_columns(request.model_dump(exclude_none=True))
        data["msku"] = msku
        data["category"] = data.get("category") or "Uncategorized"
        data.setdefault("low_stock_threshold", LOW_STOCK_THRESHOLD_DEFAULT)
        dimensions = {"length": 0, "breadth": 0, "height": 0, "weight": 0}
        dimensions.update(data.get("dimensions") or {})
        data["dimensions"] = dimensions

        product = await store.create_product(data)
        logger.info(f"Created product {product.msku}")
        return serialize_product(product)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Create product error: {e}")
        raise HTTPException(status_code=500, detail="Failed to create product")


@router.put("/products/{product_id}")
async def update_product(
    product_id: str,
    request: ProductUpdateRequest,
    store: StorageService = Depends(get_storage),
):
    """Partial update; an MSKU change is propagated to SKUs and inventory"""
    try:
        product = await store.get_product(product_id)
        if not product:
            raise HTTPException(status_code=404, detail="Product not found")

        updates = _to_columns(request.model_dump(exclude_none=True))
        new_msku = (updates.get("msku") or "").strip()
        if new_msku and new_msku != product.msku:
            if await store.find_product(new_msku):
                raise HTTPException(status_code=400, detail=f"Product with MSKU {new_msku} already exists")
            updates["msku"] = new_msku
        else:
            updates.pop("msku", None)

        if "dimensions" in updates:
            merged = dict(product.dimensions or {})
            merged.update(updates["dimensions"])
            updates["dimensions"] = merged

        old_msku = product.msku
        updated = await store.update_product(product_id, updates)
        if "msku" in updates:
            await store.rename_msku(old_msku, updates["msku"])
        return serialize_product(updated)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Update product error: {e}")
        raise HTTPException(status_code=500, detail="Failed to update product")


@router.delete("/products/{product_id}")
async def delete_product(product_id: str, store: StorageService = Depends(get_storage)):
    try:
        deleted = await store.delete_product(product_id)
        if not deleted:
            raise HTTPException(status_code=404, detail="Product not found")
        return {"success": True}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Delete product error: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete product")

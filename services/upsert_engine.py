"""
Upsert Engine
Idempotent writes of canonical order, inventory and product rows
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from services.field_mapper import (
    CanonicalInventoryRow,
    CanonicalLineItem,
    CanonicalOrderRow,
    CanonicalProductRow,
)
from services.sku_resolver import ResolutionLog, SkuResolution
from services.storage import StorageService
from settings import (
    DEFAULT_COUNTRY,
    DEFAULT_CURRENCY,
    LOW_STOCK_THRESHOLD_DEFAULT,
    ORDER_ID_SCOPE,
    UNMAPPED_MSKU,
    normalize_order_id_scope,
)
from utils import utc_now

logger = logging.getLogger(__name__)


class UpsertOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


class UpsertEngine:
    """Writes one canonical row at a time; reruns never duplicate records."""

    def __init__(
        self,
        store: StorageService,
        order_id_scope: str = ORDER_ID_SCOPE,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.order_id_scope = normalize_order_id_scope(order_id_scope)
        self.clock = clock

    def _import_note(self, marketplace: str) -> str:
        return f"Imported from {marketplace} CSV"

    # ---------- orders ----------

    def order_scope(self, marketplace: str) -> Optional[str]:
        return marketplace if self.order_id_scope == "order_id_marketplace" else None

    @staticmethod
    def build_line_items(
        line_items: List[CanonicalLineItem],
        resolved_items: List[Optional[SkuResolution]],
    ) -> Tuple[List[Dict[str, Any]], Decimal]:
        """Stored item documents plus the sum of price x quantity."""
        items: List[Dict[str, Any]] = []
        computed_total = Decimal("0")
        for item, resolution in zip(line_items, resolved_items):
            items.append({
                "sku": item.sku,
                "msku": resolution.msku if resolution else UNMAPPED_MSKU,
                "product": resolution.product_id if resolution else None,
                "name": item.name or (resolution.product_name if resolution else "") or item.sku,
                "quantity": item.quantity,
                "price": float(item.price),
                "tax": float(item.tax),
            })
            computed_total += item.price * item.quantity
        return items, computed_total

    async def upsert_order(
        self,
        row: CanonicalOrderRow,
        resolved_items: List[Optional[SkuResolution]],
        note: Optional[str] = None,
    ) -> UpsertOutcome:
        if await self.store.find_order(row.order_id, self.order_scope(row.marketplace)):
            logger.debug(f"Order {row.order_id} already exists; skipping")
            return UpsertOutcome.SKIPPED

        items, computed_total = self.build_line_items(row.items, resolved_items)
        amount = row.order_total if row.order_total else computed_total
        now = self.clock()
        customer = dict(row.customer)
        customer["country"] = customer.get("country") or DEFAULT_COUNTRY

        await self.store.create_order({
            "order_id": row.order_id,
            "order_item_id": row.order_item_id,
            "marketplace": row.marketplace,
            "order_date": row.order_date,
            "status": row.status,
            "customer": customer,
            "items": items,
            "shipping": dict(row.shipping),
            "payment": {
                "method": row.payment_method,
                "amount": float(amount),
                "currency": DEFAULT_CURRENCY,
                "status": "Completed",
            },
            "notes": row.notes,
            "raw_data": row.raw,
            "status_history": [{
                "status": row.status,
                "date": now.isoformat(),
                "note": note or self._import_note(row.marketplace),
            }],
        })
        return UpsertOutcome.CREATED

    # ---------- inventory ----------

    async def upsert_inventory(self, row: CanonicalInventoryRow, msku: str) -> UpsertOutcome:
        now = self.clock()
        existing = await self.store.find_inventory(row.sku, row.marketplace)
        if existing:
            history = list(existing.history or [])
            history.append({
                "date": now.isoformat(),
                "adjustment": row.quantity - existing.quantity,
                "reason": self._import_note(row.marketplace),
                "newQuantity": row.quantity,
            })
            updates: Dict[str, Any] = {
                "quantity": row.quantity,
                "last_updated": now,
                "history": history,
            }
            if msku != UNMAPPED_MSKU and existing.msku != msku:
                updates["msku"] = msku
            if row.fulfillment_center:
                updates["fulfillment_center"] = row.fulfillment_center
            if row.location:
                updates["location"] = row.location
            await self.store.update_inventory(existing.id, updates)
            return UpsertOutcome.UPDATED

        await self.store.create_inventory({
            "msku": msku,
            "sku": row.sku,
            "marketplace": row.marketplace,
            "quantity": row.quantity,
            "fulfillment_center": row.fulfillment_center,
            "location": row.location,
            "last_updated": now,
            "history": [{
                "date": now.isoformat(),
                "adjustment": row.quantity,
                "reason": self._import_note(row.marketplace),
                "newQuantity": row.quantity,
            }],
        })
        return UpsertOutcome.CREATED

    # ---------- products ----------

    async def upsert_product(
        self, row: CanonicalProductRow, log: Optional[ResolutionLog] = None
    ) -> UpsertOutcome:
        product = await self.store.find_product(row.msku)
        if product:
            updates = self._merge_product_fields(product, row)
            if updates:
                product = await self.store.update_product(product.id, updates)
            outcome = UpsertOutcome.UPDATED
        else:
            dimensions = {"length": 0, "breadth": 0, "height": 0, "weight": 0}
            dimensions.update(row.dimensions)
            product = await self.store.create_product({
                "msku": row.msku,
                "name": row.name,
                "description": row.description,
                "category": row.category or "Uncategorized",
                "hsn_code": row.hsn_code,
                "dimensions": dimensions,
                "low_stock_threshold": row.low_stock_threshold or LOW_STOCK_THRESHOLD_DEFAULT,
            })
            outcome = UpsertOutcome.CREATED

        if row.sku:
            await self._bind_product_sku(product, row, log)
        return outcome

    def _merge_product_fields(self, product, row: CanonicalProductRow) -> Dict[str, Any]:
        """Only non-empty incoming values overwrite stored ones."""
        updates: Dict[str, Any] = {}
        for attr in ("name", "description", "category", "hsn_code"):
            value = getattr(row, attr)
            if value and value != getattr(product, attr):
                updates[attr] = value
        if row.low_stock_threshold is not None and row.low_stock_threshold != product.low_stock_threshold:
            updates["low_stock_threshold"] = row.low_stock_threshold
        incoming_dims = {k: v for k, v in row.dimensions.items() if v}
        if incoming_dims:
            merged = dict(product.dimensions or {})
            merged.update(incoming_dims)
            if merged != product.dimensions:
                updates["dimensions"] = merged
        return updates

    async def _bind_product_sku(self, product, row: CanonicalProductRow, log: Optional[ResolutionLog]) -> None:
        if await self.store.find_sku(row.sku, row.marketplace):
            return
        await self.store.create_sku({
            "sku": row.sku,
            "msku": product.msku,
            "product_id": product.id,
            "marketplace": row.marketplace,
            "marketplace_identifiers": dict(row.identifiers),
        })
        now = self.clock()
        inventory = await self.store.find_inventory(row.sku, row.marketplace)
        if inventory:
            if inventory.msku == UNMAPPED_MSKU:
                await self.store.update_inventory(inventory.id, {"msku": product.msku})
        else:
            await self.store.create_inventory({
                "msku": product.msku,
                "sku": row.sku,
                "marketplace": row.marketplace,
                "quantity": row.quantity,
                "last_updated": now,
                "history": [{
                    "date": now.isoformat(),
                    "adjustment": row.quantity,
                    "reason": self._import_note(row.marketplace),
                    "newQuantity": row.quantity,
                }],
            })
        if log is not None:
            log.add_new(row.sku, product.msku, row.marketplace)
        logger.info(f"Bound SKU {row.sku} ({row.marketplace}) to product {product.msku}")

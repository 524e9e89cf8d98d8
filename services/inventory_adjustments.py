"""
Inventory Adjustments
Manual stock corrections and bulk quantity updates outside of CSV imports
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from database import Inventory
from services.storage import StorageService
from settings import UNMAPPED_MSKU, normalize_marketplace
from utils import utc_now

logger = logging.getLogger(__name__)

ADJUSTMENT_TYPES = ("add", "remove")


class InventoryAdjustmentError(ValueError):
    pass


def apply_adjustment(current: int, adjustment_type: str, amount: int) -> int:
    """New quantity after an add/remove; removals clamp at zero."""
    if adjustment_type not in ADJUSTMENT_TYPES:
        raise InventoryAdjustmentError(f"Adjustment type must be one of: {', '.join(ADJUSTMENT_TYPES)}")
    if amount < 0:
        raise InventoryAdjustmentError("Adjustment must be a non-negative number")
    if adjustment_type == "add":
        return current + amount
    return max(0, current - amount)


class InventoryAdjuster:
    def __init__(self, store: StorageService, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    def _history_entry(self, previous: int, new_quantity: int, reason: str) -> Dict[str, Any]:
        return {
            "date": self.clock().isoformat(),
            "adjustment": new_quantity - previous,
            "reason": reason,
            "newQuantity": new_quantity,
        }

    async def adjust(
        self, inventory_id: str, adjustment_type: str, amount: int, reason: Optional[str] = None
    ) -> Optional[Inventory]:
        record = await self.store.get_inventory(inventory_id)
        if not record:
            return None
        new_quantity = apply_adjustment(record.quantity, adjustment_type, amount)
        history = list(record.history or [])
        history.append(self._history_entry(record.quantity, new_quantity, reason or f"Manual {adjustment_type}"))
        logger.info(
            f"Inventory {record.sku} ({record.marketplace}) {adjustment_type} {amount}: "
            f"{record.quantity} -> {new_quantity}"
        )
        return await self.store.update_inventory(inventory_id, {
            "quantity": new_quantity,
            "history": history,
            "last_updated": self.clock(),
        })

    async def set_quantity(self, inventory_id: str, quantity: int, reason: Optional[str] = None) -> Optional[Inventory]:
        if quantity < 0:
            raise InventoryAdjustmentError("Quantity must be a non-negative number")
        record = await self.store.get_inventory(inventory_id)
        if not record:
            return None
        history = list(record.history or [])
        history.append(self._history_entry(record.quantity, quantity, reason or "Manual update"))
        return await self.store.update_inventory(inventory_id, {
            "quantity": quantity,
            "history": history,
            "last_updated": self.clock(),
        })

    async def bulk_update(self, items: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Set quantities by (sku, marketplace). Missing rows are created, under UNMAPPED
        when the SKU has no binding; each item succeeds or fails on its own.
        """
        results = {"total": len(items), "updated": 0, "created": 0, "failed": 0, "errors": []}
        for idx, item in enumerate(items):
            sku = str(item.get("sku") or "").strip()
            marketplace = normalize_marketplace(item.get("marketplace"))
            try:
                quantity = int(item.get("quantity"))
            except (TypeError, ValueError):
                quantity = -1
            if not sku or not marketplace or quantity < 0:
                results["failed"] += 1
                results["errors"].append({"index": idx, "sku": sku, "message": "sku, marketplace and a non-negative quantity are required"})
                continue

            try:
                record = await self.store.find_inventory(sku, marketplace)
                reason = item.get("reason") or "Bulk update"
                if record:
                    history = list(record.history or [])
                    history.append(self._history_entry(record.quantity, quantity, reason))
                    await self.store.update_inventory(record.id, {
                        "quantity": quantity,
                        "history": history,
                        "last_updated": self.clock(),
                    })
                    results["updated"] += 1
                    continue

                binding = await self.store.find_sku(sku, marketplace)
                await self.store.create_inventory({
                    "msku": binding.msku if binding else UNMAPPED_MSKU,
                    "sku": sku,
                    "marketplace": marketplace,
                    "quantity": quantity,
                    "location": item.get("location"),
                    "last_updated": self.clock(),
                    "history": [self._history_entry(0, quantity, reason)],
                })
                results["created"] += 1
            except Exception as e:
                logger.warning(f"Bulk inventory update failed for {sku} ({marketplace}): {e}")
                results["failed"] += 1
                results["errors"].append({"index": idx, "sku": sku, "message": str(e)})
        return results

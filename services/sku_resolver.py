"""
SKU Resolver
Maps a marketplace SKU onto its master SKU (MSKU) for the duration of one import
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional

from services.storage import StorageService
from settings import UNMAPPED_MSKU
from utils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class SkuResolution:
    msku: str
    product_id: Optional[str]
    product_name: Optional[str]
    created: bool = False


@dataclass
class ResolutionLog:
    """First-seen-ordered, de-duplicated SKU lists reported back to the caller."""

    new_skus: List[Dict[str, str]] = field(default_factory=list)
    unmapped_skus: List[str] = field(default_factory=list)

    def add_new(self, sku: str, msku: str, marketplace: str) -> None:
        if any(entry["sku"] == sku and entry["marketplace"] == marketplace for entry in self.new_skus):
            return
        self.new_skus.append({"sku": sku, "msku": msku, "marketplace": marketplace})

    def add_unmapped(self, sku: str) -> None:
        if sku not in self.unmapped_skus:
            self.unmapped_skus.append(sku)


class SkuResolver:
    """
    Resolution order is fixed:
      1. an existing (sku, marketplace) binding
      2. a caller-supplied mapping sku -> MSKU whose product exists (binding is created)
      3. unresolved
    """

    def __init__(
        self,
        store: StorageService,
        log: Optional[ResolutionLog] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.log = log or ResolutionLog()
        self.clock = clock
        self._cache: Dict[tuple, Optional[SkuResolution]] = {}

    async def resolve(
        self,
        marketplace_sku: str,
        marketplace: str,
        mappings: Optional[Mapping[str, str]] = None,
    ) -> Optional[SkuResolution]:
        if not marketplace_sku:
            return None

        key = (marketplace_sku, marketplace)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        resolution = await self._lookup_existing(marketplace_sku, marketplace)
        if resolution is None:
            resolution = await self._bind_from_mapping(marketplace_sku, marketplace, mappings or {})
        if resolution is None:
            self.log.add_unmapped(marketplace_sku)
            logger.debug(f"SKU {marketplace_sku} ({marketplace}) is unmapped")
            return None

        self._cache[key] = resolution
        return resolution

    async def _lookup_existing(self, sku: str, marketplace: str) -> Optional[SkuResolution]:
        binding = await self.store.find_sku(sku, marketplace)
        if not binding:
            return None
        product = await self.store.find_product(binding.msku)
        return SkuResolution(
            msku=binding.msku,
            product_id=product.id if product else binding.product_id,
            product_name=product.name if product else None,
        )

    async def _bind_from_mapping(
        self, sku: str, marketplace: str, mappings: Mapping[str, str]
    ) -> Optional[SkuResolution]:
        target = (mappings.get(sku) or "").strip()
        if not target or target == UNMAPPED_MSKU:
            return None
        product = await self.store.find_product(target)
        if not product:
            logger.warning(f"Mapping {sku} -> {target} ignored: no product with that MSKU")
            return None

        await self.store.create_sku({
            "sku": sku,
            "msku": product.msku,
            "product_id": product.id,
            "marketplace": marketplace,
        })
        # A zero-stock inventory row keeps the new binding visible in stock views
        existing = await self.store.find_inventory(sku, marketplace)
        if existing and existing.msku == UNMAPPED_MSKU:
            await self.store.update_inventory(existing.id, {"msku": product.msku})
        elif not existing:
            await self.store.create_inventory({
                "msku": product.msku,
                "sku": sku,
                "marketplace": marketplace,
                "quantity": 0,
                "history": [],
                "last_updated": self.clock(),
            })
        self.log.add_new(sku, product.msku, marketplace)
        logger.info(f"Created SKU binding {sku} ({marketplace}) -> {product.msku}")
        return SkuResolution(
            msku=product.msku,
            product_id=product.id,
            product_name=product.name,
            created=True,
        )

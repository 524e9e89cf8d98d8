"""
Import Orchestrator
Drives one CSV import: parse -> map -> resolve -> upsert, row by row, with per-row failure isolation
"""
from __future__ import annotations

import csv
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from services.field_mapper import FieldMapper, get_field_mapper
from services.import_errors import (
    EmptyImportFileError,
    InvalidImportTypeError,
    MissingImportParameterError,
    StorageUnavailableError,
    UnsupportedMarketplaceError,
)
from services.marketplace_detector import read_csv, suggest_import_type
from services.sku_resolver import ResolutionLog, SkuResolver
from services.storage import StorageService
from services.upsert_engine import UpsertEngine, UpsertOutcome
from settings import IMPORT_TYPES, MARKETPLACES, ORDER_ID_SCOPE, UNMAPPED_MSKU, normalize_marketplace
from utils import utc_now

logger = logging.getLogger(__name__)

IMPORT_TYPE_ALIASES = {
    "order": "orders",
    "orders": "orders",
    "inventory": "inventory",
    "stock": "inventory",
    "product": "products",
    "products": "products",
    "auto": "auto",
    "": "auto",
    None: "auto",
}


@dataclass
class ImportSummary:
    marketplace: str
    import_type: str
    total: int = 0
    processed: int = 0
    skipped: int = 0
    flagged: int = 0
    failed: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    new_skus: List[Dict[str, str]] = field(default_factory=list)
    unmapped_skus: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "marketplace": self.marketplace,
            "importType": self.import_type,
            "total": self.total,
            "processed": self.processed,
            "skipped": self.skipped,
            "flagged": self.flagged,
            "failed": self.failed,
            "errors": list(self.errors),
            "newSkus": list(self.new_skus),
            "unmappedSkus": list(self.unmapped_skus),
        }


class ImportOrchestrator:
    """
    One call imports one file. Nothing is carried between calls: the SKU
    resolution log and caches live only for the duration of run_import.
    """

    def __init__(
        self,
        store: StorageService,
        clock: Callable[[], datetime] = utc_now,
        order_id_scope: str = ORDER_ID_SCOPE,
    ):
        self.store = store
        self.clock = clock
        self.order_id_scope = order_id_scope

    async def run_import(
        self,
        content: Optional[str],
        marketplace: Optional[str],
        import_type: Optional[str] = "auto",
        mappings: Optional[Mapping[str, str]] = None,
        filename: Optional[str] = None,
    ) -> ImportSummary:
        started = time.time()
        received_at = self.clock()

        if content is None:
            raise MissingImportParameterError("No file provided")
        resolved_marketplace = normalize_marketplace(marketplace)
        if not resolved_marketplace:
            raise MissingImportParameterError("Marketplace is required")
        if resolved_marketplace not in MARKETPLACES:
            raise UnsupportedMarketplaceError(
                f"Unsupported marketplace {marketplace!r}. Must be one of: {', '.join(MARKETPLACES)}"
            )

        normalized_type = IMPORT_TYPE_ALIASES.get(
            import_type.strip().lower() if isinstance(import_type, str) else import_type
        )
        if normalized_type is None:
            raise InvalidImportTypeError(
                f"Invalid import type {import_type!r}. Must be one of: {', '.join(IMPORT_TYPES)}"
            )

        if not content.strip():
            raise EmptyImportFileError("CSV file is empty")
        try:
            headers, rows = read_csv(content)
        except csv.Error as e:
            raise EmptyImportFileError(f"CSV could not be parsed: {e}")
        if not rows:
            raise EmptyImportFileError("CSV file has no data rows")

        if normalized_type == "auto":
            normalized_type = suggest_import_type(headers)

        try:
            await self.store.ping()
        except Exception as e:
            logger.exception("Storage ping failed before import")
            raise StorageUnavailableError(f"Database unavailable: {type(e).__name__}")

        logger.info(
            f"Import started marketplace={resolved_marketplace} type={normalized_type} "
            f"rows={len(rows)} filename={filename!r}"
        )

        mapper = get_field_mapper(resolved_marketplace)
        log = ResolutionLog()
        resolver = SkuResolver(self.store, log=log, clock=self.clock)
        engine = UpsertEngine(self.store, order_id_scope=self.order_id_scope, clock=self.clock)
        summary = ImportSummary(marketplace=resolved_marketplace, import_type=normalized_type, total=len(rows))
        mappings = dict(mappings or {})

        for idx, row in enumerate(rows):
            # header is line 1, so data rows start at 2
            row_number = idx + 2
            try:
                if normalized_type == "orders":
                    outcome = await self._import_order(row, mapper, resolver, engine, mappings, received_at)
                elif normalized_type == "inventory":
                    outcome = await self._import_inventory(row, mapper, resolver, engine, mappings)
                else:
                    outcome = await self._import_product(row, mapper, engine, mappings, log)
            except Exception as e:
                logger.warning(f"Row {row_number} failed: {type(e).__name__}: {e}")
                summary.failed += 1
                summary.errors.append({"row": row_number, "message": str(e) or type(e).__name__})
                continue

            if outcome == "flagged":
                summary.flagged += 1
            elif outcome == UpsertOutcome.SKIPPED:
                summary.skipped += 1
            else:
                summary.processed += 1

        summary.new_skus = list(log.new_skus)
        summary.unmapped_skus = list(log.unmapped_skus)

        dur_ms = int((time.time() - started) * 1000)
        logger.info(
            f"Import completed marketplace={resolved_marketplace} type={normalized_type} "
            f"total={summary.total} processed={summary.processed} skipped={summary.skipped} "
            f"flagged={summary.flagged} failed={summary.failed} durMs={dur_ms}"
        )
        return summary

    async def _import_order(self, row, mapper: FieldMapper, resolver: SkuResolver, engine: UpsertEngine,
                            mappings: Mapping[str, str], received_at: datetime):
        canonical = mapper.map_order_row(row, received_at)
        if canonical is None:
            return UpsertOutcome.SKIPPED

        # Duplicate orders are skipped before any SKU bindings get created
        if await self.store.find_order(canonical.order_id, engine.order_scope(canonical.marketplace)):
            return UpsertOutcome.SKIPPED

        resolutions = []
        for item in canonical.items:
            resolutions.append(await resolver.resolve(item.sku, canonical.marketplace, mappings))

        outcome = await engine.upsert_order(canonical, resolutions)
        if outcome == UpsertOutcome.CREATED and any(r is None for r in resolutions):
            return "flagged"
        return outcome

    async def _import_inventory(self, row, mapper: FieldMapper, resolver: SkuResolver, engine: UpsertEngine,
                                mappings: Mapping[str, str]):
        canonical = mapper.map_inventory_row(row)
        if canonical is None:
            return UpsertOutcome.SKIPPED
        resolution = await resolver.resolve(canonical.sku, canonical.marketplace, mappings)
        outcome = await engine.upsert_inventory(canonical, resolution.msku if resolution else UNMAPPED_MSKU)
        return "flagged" if resolution is None else outcome

    async def _import_product(self, row, mapper: FieldMapper, engine: UpsertEngine,
                              mappings: Mapping[str, str], log: ResolutionLog):
        canonical = mapper.map_product_row(row, mappings)
        if canonical is None:
            return UpsertOutcome.SKIPPED
        return await engine.upsert_product(canonical, log)

"""
Centralized configuration helpers for marketplace imports.
"""
from __future__ import annotations

import os
from typing import Optional, Any

from dotenv import load_dotenv

load_dotenv()

MARKETPLACES: tuple[str, ...] = ("Amazon", "Flipkart", "Meesho")
IMPORT_TYPES: tuple[str, ...] = ("orders", "inventory", "products")

UNMAPPED_MSKU: str = "UNMAPPED"

# "order_id" keys orders by the external id alone; "order_id_marketplace"
# scopes the id to its marketplace.
ORDER_ID_SCOPES: tuple[str, ...] = ("order_id", "order_id_marketplace")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def normalize_order_id_scope(value: Optional[Any]) -> str:
    """Fall back to the global scope for unknown values."""
    text = str(value or "").strip().lower()
    return text if text in ORDER_ID_SCOPES else "order_id"


ORDER_ID_SCOPE: str = normalize_order_id_scope(os.getenv("ORDER_ID_SCOPE"))

UPLOAD_TTL_SECONDS: int = _env_int("UPLOAD_TTL_SECONDS", 30 * 60)
UPLOAD_MAX_BYTES: int = _env_int("UPLOAD_MAX_BYTES", 10 * 1024 * 1024)
UPLOAD_SWEEP_INTERVAL_SECONDS: int = _env_int("UPLOAD_SWEEP_INTERVAL_SECONDS", 60)

DEFAULT_CURRENCY: str = os.getenv("DEFAULT_CURRENCY") or "INR"
DEFAULT_COUNTRY: str = os.getenv("DEFAULT_COUNTRY") or "India"
LOW_STOCK_THRESHOLD_DEFAULT: int = _env_int("LOW_STOCK_THRESHOLD_DEFAULT", 10)


def normalize_marketplace(value: Optional[Any]) -> Optional[str]:
    """Map 'amazon', ' AMAZON ' etc. onto the registered marketplace name."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    for name in MARKETPLACES:
        if name.lower() == text.lower():
            return name
    return text

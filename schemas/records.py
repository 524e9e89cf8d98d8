"""
Record Schemas
==============

Response shapes for the four stores. Routers return these camelCase dicts;
ORM rows never leave the service layer directly.

Product   -> msku is the master identity
Sku       -> (sku, marketplace) binding onto a product's msku
Inventory -> stock per (msku, sku, marketplace), with an adjustment history
Order     -> one marketplace order; items carry msku or "UNMAPPED"
"""

from typing import Any, Dict, List, Optional, TypedDict
from datetime import datetime


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class ProductDict(TypedDict, total=False):
    id: str
    msku: str
    name: str
    description: Optional[str]
    category: str
    hsnCode: Optional[str]
    dimensions: Dict[str, float]
    lowStockThreshold: int
    createdAt: Optional[str]
    updatedAt: Optional[str]


class SkuDict(TypedDict, total=False):
    id: str
    sku: str
    msku: str
    productId: Optional[str]
    marketplace: str
    marketplaceIdentifiers: Dict[str, str]
    active: bool


class InventoryDict(TypedDict, total=False):
    id: str
    msku: str
    sku: str
    marketplace: str
    quantity: int
    location: Optional[str]
    fulfillmentCenter: Optional[str]
    history: List[Dict[str, Any]]
    lastUpdated: Optional[str]


class OrderDict(TypedDict, total=False):
    id: str
    orderId: str
    orderItemId: Optional[str]
    marketplace: str
    orderDate: Optional[str]
    status: str
    customer: Dict[str, Any]
    items: List[Dict[str, Any]]
    shipping: Dict[str, Any]
    payment: Dict[str, Any]
    notes: Optional[str]
    statusHistory: List[Dict[str, Any]]
    createdAt: Optional[str]


def serialize_product(product) -> ProductDict:
    return {
        "id": product.id,
        "msku": product.msku,
        "name": product.name,
        "description": product.description,
        "category": product.category,
        "hsnCode": product.hsn_code,
        "dimensions": dict(product.dimensions or {}),
        "lowStockThreshold": product.low_stock_threshold,
        "createdAt": _iso(product.created_at),
        "updatedAt": _iso(product.updated_at),
    }


def serialize_sku(sku) -> SkuDict:
    return {
        "id": sku.id,
        "sku": sku.sku,
        "msku": sku.msku,
        "productId": sku.product_id,
        "marketplace": sku.marketplace,
        "marketplaceIdentifiers": dict(sku.marketplace_identifiers or {}),
        "active": bool(sku.active),
    }


def serialize_inventory(record, include_history: bool = False) -> InventoryDict:
    payload: InventoryDict = {
        "id": record.id,
        "msku": record.msku,
        "sku": record.sku,
        "marketplace": record.marketplace,
        "quantity": record.quantity,
        "location": record.location,
        "fulfillmentCenter": record.fulfillment_center,
        "lastUpdated": _iso(record.last_updated),
    }
    if include_history:
        payload["history"] = list(record.history or [])
    return payload


def serialize_order(order, include_raw: bool = False) -> OrderDict:
    payload: Dict[str, Any] = {
        "id": order.id,
        "orderId": order.order_id,
        "orderItemId": order.order_item_id,
        "marketplace": order.marketplace,
        "orderDate": _iso(order.order_date),
        "status": order.status,
        "customer": dict(order.customer or {}),
        "items": list(order.items or []),
        "shipping": dict(order.shipping or {}),
        "payment": dict(order.payment or {}),
        "notes": order.notes,
        "statusHistory": list(order.status_history or []),
        "createdAt": _iso(order.created_at),
    }
    if include_raw:
        payload["rawData"] = order.raw_data
    return payload

"""
Orders Router
Order listing, status transitions and shipping details
"""
from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel
from typing import Any, Dict, List, Optional
from datetime import datetime
from decimal import Decimal
import logging

from schemas import serialize_order
from services.field_mapper import CanonicalLineItem, CanonicalOrderRow, parse_datetime
from services.sku_resolver import SkuResolver
from services.storage import StorageService, get_storage
from services.upsert_engine import UpsertEngine, UpsertOutcome
from settings import DEFAULT_CURRENCY, MARKETPLACES, normalize_marketplace
from utils import utc_now

logger = logging.getLogger(__name__)
router = APIRouter()


class StatusUpdateRequest(BaseModel):
    status: str
    note: Optional[str] = None


class ShippingUpdateRequest(BaseModel):
    shipmentId: Optional[str] = None
    trackingId: Optional[str] = None
    carrier: Optional[str] = None
    dispatchAfter: Optional[str] = None
    dispatchBy: Optional[str] = None
    fulfillmentCenter: Optional[str] = None


class OrderItemRequest(BaseModel):
    sku: str
    name: Optional[str] = None
    quantity: int = 1
    price: float = 0
    tax: float = 0


class OrderCreateRequest(BaseModel):
    orderId: str
    marketplace: str
    items: List[OrderItemRequest] = []
    orderItemId: Optional[str] = None
    orderDate: Optional[str] = None
    status: Optional[str] = None
    customer: Optional[Dict[str, Any]] = None
    shipping: Optional[Dict[str, Any]] = None
    totalAmount: Optional[float] = None
    paymentMethod: Optional[str] = None
    notes: Optional[str] = None


class OrderUpdateRequest(BaseModel):
    status: Optional[str] = None
    note: Optional[str] = None
    orderDate: Optional[str] = None
    customer: Optional[Dict[str, Any]] = None
    shipping: Optional[Dict[str, Any]] = None
    items: Optional[List[OrderItemRequest]] = None
    totalAmount: Optional[float] = None
    paymentMethod: Optional[str] = None
    notes: Optional[str] = None


def _date_param(value: Optional[str], name: str) -> Optional[datetime]:
    if not value:
        return None
    parsed = parse_datetime(value)
    if parsed is None:
        raise HTTPException(status_code=400, detail=f"Invalid {name}")
    return parsed


def _line_items(items: List[OrderItemRequest]) -> List[CanonicalLineItem]:
    line_items = []
    for item in items:
        sku = item.sku.strip()
        if not sku:
            raise HTTPException(status_code=400, detail="Every order item needs a SKU")
        line_items.append(CanonicalLineItem(
            sku=sku,
            name=(item.name or "").strip() or sku,
            quantity=max(1, item.quantity),
            price=max(Decimal("0"), Decimal(str(item.price))),
            tax=max(Decimal("0"), Decimal(str(item.tax))),
        ))
    return line_items


async def _resolve_items(store: StorageService, line_items: List[CanonicalLineItem], marketplace: str):
    resolver = SkuResolver(store)
    return [await resolver.resolve(item.sku, marketplace) for item in line_items]


@router.get("/orders")
async def list_orders(
    status: Optional[str] = None,
    marketplace: Optional[str] = None,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    store: StorageService = Depends(get_storage),
):
    try:
        orders, total = await store.list_orders(
            status=status,
            marketplace=normalize_marketplace(marketplace),
            start_date=_date_param(startDate, "startDate"),
            end_date=_date_param(endDate, "endDate"),
            search=search,
            page=page,
            limit=limit,
        )
        limit = max(1, min(limit, 200))
        return {
            "orders": [serialize_order(o) for o in orders],
            "pagination": {
                "total": total,
                "page": max(1, page),
                "limit": limit,
                "pages": (total + limit - 1) // limit,
            },
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"List orders error: {e}")
        raise HTTPException(status_code=500, detail="Failed to list orders")


@router.post("/orders", status_code=201)
async def create_order(request: OrderCreateRequest, store: StorageService = Depends(get_storage)):
    """Manual order entry; items resolve to their MSKU or UNMAPPED like imported rows"""
    try:
        order_id = request.orderId.strip()
        if not order_id:
            raise HTTPException(status_code=400, detail="orderId is required")
        marketplace = normalize_marketplace(request.marketplace)
        if marketplace not in MARKETPLACES:
            raise HTTPException(status_code=400, detail=f"Marketplace must be one of: {', '.join(MARKETPLACES)}")
        if not request.items:
            raise HTTPException(status_code=400, detail="Order must have at least one item")

        engine = UpsertEngine(store)
        if await store.find_order(order_id, engine.order_scope(marketplace)):
            raise HTTPException(status_code=400, detail=f"Order {order_id} already exists")

        line_items = _line_items(request.items)
        row = CanonicalOrderRow(
            order_id=order_id,
            order_item_id=request.orderItemId,
            marketplace=marketplace,
            order_date=_date_param(request.orderDate, "orderDate") or utc_now(),
            status=(request.status or "").strip() or "Pending",
            customer=dict(request.customer or {}),
            items=line_items,
            shipping=dict(request.shipping or {}),
            order_total=Decimal(str(request.totalAmount)) if request.totalAmount else None,
            payment_method=request.paymentMethod,
            notes=request.notes,
        )
        resolutions = await _resolve_items(store, line_items, marketplace)
        outcome = await engine.upsert_order(row, resolutions, note="Order created")
        if outcome == UpsertOutcome.SKIPPED:
            raise HTTPException(status_code=400, detail=f"Order {order_id} already exists")

        order = await store.find_order(order_id, marketplace)
        logger.info(f"Order {order_id} created manually for {marketplace}")
        return serialize_order(order)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Create order error: {e}")
        raise HTTPException(status_code=500, detail="Failed to create order")


@router.get("/orders/{order_pk}")
async def get_order(order_pk: str, store: StorageService = Depends(get_storage)):
    try:
        order = await store.get_order(order_pk)
        if not order:
            raise HTTPException(status_code=404, detail="Order not found")
        return serialize_order(order, include_raw=True)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Get order error: {e}")
        raise HTTPException(status_code=500, detail="Failed to get order")


@router.put("/orders/{order_pk}")
async def update_order(
    order_pk: str,
    request: OrderUpdateRequest,
    store: StorageService = Depends(get_storage),
):
    """Partial edit: customer and shipping merge, items replace, status appends history on change"""
    try:
        order = await store.get_order(order_pk)
        if not order:
            raise HTTPException(status_code=404, detail="Order not found")

        updates: Dict[str, Any] = {}
        payment = dict(order.payment or {})
        status = (request.status or "").strip()
        if status and status != order.status:
            history = list(order.status_history or [])
            history.append({
                "status": status,
                "date": utc_now().isoformat(),
                "note": request.note or f"Status changed from {order.status}",
            })
            updates["status"] = status
            updates["status_history"] = history
        if request.orderDate:
            updates["order_date"] = _date_param(request.orderDate, "orderDate")
        if request.customer:
            updates["customer"] = {**(order.customer or {}), **request.customer}
        if request.shipping:
            updates["shipping"] = {**(order.shipping or {}), **request.shipping}
        if request.items is not None:
            if not request.items:
                raise HTTPException(status_code=400, detail="Order must have at least one item")
            line_items = _line_items(request.items)
            resolutions = await _resolve_items(store, line_items, order.marketplace)
            items, computed_total = UpsertEngine.build_line_items(line_items, resolutions)
            updates["items"] = items
            payment["amount"] = float(computed_total)
        if request.totalAmount is not None:
            payment["amount"] = float(request.totalAmount)
        if request.paymentMethod:
            payment["method"] = request.paymentMethod
        if payment != (order.payment or {}):
            payment.setdefault("currency", DEFAULT_CURRENCY)
            updates["payment"] = payment
        if request.notes is not None:
            updates["notes"] = request.notes

        if not updates:
            return serialize_order(order)
        updated = await store.update_order(order_pk, updates)
        logger.info(f"Order {order.order_id} updated: {', '.join(sorted(updates))}")
        return serialize_order(updated)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Update order error: {e}")
        raise HTTPException(status_code=500, detail="Failed to update order")


@router.put("/orders/{order_pk}/status")
async def update_order_status(
    order_pk: str,
    request: StatusUpdateRequest,
    store: StorageService = Depends(get_storage),
):
    """History only grows when the status actually changes"""
    try:
        order = await store.get_order(order_pk)
        if not order:
            raise HTTPException(status_code=404, detail="Order not found")
        status = request.status.strip()
        if not status:
            raise HTTPException(status_code=400, detail="Status is required")
        if status == order.status:
            return serialize_order(order)

        history = list(order.status_history or [])
        history.append({
            "status": status,
            "date": utc_now().isoformat(),
            "note": request.note or f"Status changed from {order.status}",
        })
        updated = await store.update_order(order_pk, {"status": status, "status_history": history})
        logger.info(f"Order {order.order_id} status {order.status} -> {status}")
        return serialize_order(updated)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Update order status error: {e}")
        raise HTTPException(status_code=500, detail="Failed to update order status")


@router.put("/orders/{order_pk}/shipping")
async def update_order_shipping(
    order_pk: str,
    request: ShippingUpdateRequest,
    store: StorageService = Depends(get_storage),
):
    try:
        order = await store.get_order(order_pk)
        if not order:
            raise HTTPException(status_code=404, detail="Order not found")
        shipping = dict(order.shipping or {})
        shipping.update(request.model_dump(exclude_none=True))
        updated = await store.update_order(order_pk, {"shipping": shipping})
        return serialize_order(updated)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Update order shipping error: {e}")
        raise HTTPException(status_code=500, detail="Failed to update order shipping")


@router.delete("/orders/{order_pk}")
async def delete_order(order_pk: str, store: StorageService = Depends(get_storage)):
    try:
        if not await store.delete_order(order_pk):
            raise HTTPException(status_code=404, detail="Order not found")
        return {"success": True}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Delete order error: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete order")

"""
Marketplace Field Mapper
Normalizes Amazon / Flipkart / Meesho CSV rows into canonical order, inventory and product rows
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

from utils import as_decimal, as_int, clean_cell

logger = logging.getLogger(__name__)

Aliases = Tuple[str, ...]

# Ordered header aliases per marketplace and canonical field; the first non-empty one wins.
HEADER_ALIASES: Dict[str, Dict[str, Aliases]] = {
    "Amazon": {
        "order_id": ("AmazonOrderId", "amazon-order-id", "order-id", "orderId"),
        "order_item_id": ("OrderItemId", "order-item-id"),
        "order_date": ("PurchaseDate", "purchase-date", "order-date", "orderDate"),
        "status": ("OrderStatus", "order-status", "status"),
        "customer_name": ("BuyerName", "buyer-name", "recipient-name"),
        "customer_phone": ("BuyerPhoneNumber", "buyer-phone-number", "ship-phone-number"),
        "address": ("ShipAddress1", "ship-address-1"),
        "city": ("ShipCity", "ship-city"),
        "state": ("ShipState", "ship-state"),
        "pincode": ("ShipPostalCode", "ship-postal-code"),
        "country": ("ShipCountry", "ship-country"),
        "sku": ("SellerSKU", "seller-sku", "sku", "MSKU"),
        "item_name": ("ProductName", "Title", "product-name", "item-name"),
        "quantity": ("QuantityOrdered", "quantity-purchased", "quantity", "Quantity"),
        "price": ("ItemPrice", "item-price", "price"),
        "tax": ("ItemTax", "item-tax"),
        "order_total": ("OrderTotal", "order-total"),
        "payment_method": ("PaymentMethod", "payment-method"),
        "shipment_id": ("ShipmentId", "shipment-id"),
        "tracking_id": ("TrackingNumber", "tracking-number"),
        "carrier": ("Carrier", "carrier"),
        "fulfillment_center": ("Fulfillment Center", "fulfillment-center-id", "FulfillmentCenterId"),
        "stock": ("afn-fulfillable-quantity", "Quantity", "quantity", "Available"),
        "location": ("Location", "Disposition", "disposition"),
        "msku": ("MSKU", "msku", "Master SKU"),
        "asin": ("ASIN", "asin"),
        "fnsku": ("FNSKU", "fnsku"),
    },
    "Flipkart": {
        "order_id": ("Order Id", "Order ID", "orderId"),
        "order_item_id": ("ORDER ITEM ID", "Order Item ID", "orderItemId"),
        "order_date": ("Ordered On", "Order Date", "orderedOn"),
        "status": ("Order State", "Order Status", "orderState"),
        "customer_name": ("Buyer name", "Ship to name", "Customer Name"),
        "customer_phone": ("Phone No", "Customer Phone"),
        "address": ("Address Line 1", "Address"),
        "city": ("City",),
        "state": ("State",),
        "pincode": ("PIN Code", "Pincode"),
        "sku": ("SKU", "Seller SKU"),
        "item_name": ("Product", "Product Title"),
        "quantity": ("Quantity",),
        "price": ("Selling Price Per Item", "Unit Price", "sellingPrice"),
        "tax": ("Tax", "GST"),
        "order_total": ("Total Amount", "Invoice Amount"),
        "payment_method": ("Payment Type", "Payment Method"),
        "shipment_id": ("Shipment ID",),
        "tracking_id": ("Tracking ID",),
        "carrier": ("Courier", "Logistics Partner"),
        "dispatch_after": ("Dispatch After date",),
        "dispatch_by": ("Dispatch by date",),
        "stock": ("Available Quantity", "Quantity", "Stock"),
        "location": ("Warehouse", "Location"),
        "msku": ("MSKU", "Master SKU"),
        "fsn": ("FSN",),
    },
    "Meesho": {
        "order_id": ("Sub Order No", "Order Number"),
        "order_date": ("Order Date", "Order Date & Time"),
        "status": ("Reason for Credit Entry", "Order Status"),
        "customer_name": ("Customer Name",),
        "state": ("Customer State",),
        "pincode": ("Customer Pincode", "Pincode"),
        "sku": ("SKU", "SKU ID"),
        "item_name": ("Product Name",),
        "quantity": ("Quantity",),
        "price": ("Supplier Listed Price (Incl. GST + Commission)", "Product Price"),
        "order_total": ("Order Amount",),
        "payment_method": ("Payment Mode", "Payment Method"),
        "tracking_id": ("AWB Number", "Tracking ID"),
        "carrier": ("Courier Partner",),
        "stock": ("Available Quantity", "Stock", "Quantity"),
        "location": ("Warehouse", "Location"),
        "msku": ("MSKU", "Master SKU"),
    },
}

# Product attributes share header names across marketplaces.
PRODUCT_ALIASES: Dict[str, Aliases] = {
    "name": ("Product Name", "product-name", "item-name", "ProductName", "Product Title", "Title", "Product", "name"),
    "description": ("Description", "description", "item-description"),
    "category": ("Category", "category", "Product Category"),
    "hsn_code": ("HSN Code", "HSN", "hsn"),
    "length": ("Length", "length"),
    "breadth": ("Breadth", "Width", "breadth", "width"),
    "height": ("Height", "height"),
    "weight": ("Weight", "weight"),
    "low_stock_threshold": ("Low Stock Threshold", "lowStockThreshold"),
    "ean": ("EAN", "ean"),
    "upc": ("UPC", "upc"),
    "isbn": ("ISBN", "isbn"),
}

STATUS_MAPS: Dict[str, Dict[str, str]] = {
    "Amazon": {
        "Shipped": "Shipped",
        "Delivered": "Delivered",
        "Canceled": "Cancelled",
        "Cancelled": "Cancelled",
        "Returned": "Returned",
        "Pending": "Processing",
        "Unshipped": "Processing",
    },
    "Flipkart": {
        "SHIPPED": "Shipped",
        "DELIVERED": "Delivered",
        "CANCELLED": "Cancelled",
        "RETURN_REQUESTED": "Return Requested",
        "RETURNED": "Returned",
        "APPROVED": "Processing",
        "PACKING": "Processing",
        "PACKED": "Processing",
        "READY_TO_DISPATCH": "Processing",
    },
    "Meesho": {
        "DELIVERED": "Delivered",
        "SHIPPED": "Shipped",
        "CANCELLED": "Cancelled",
        "RTO_INITIATED": "RTO Initiated",
        "RTO_DELIVERED": "RTO Delivered",
        "PENDING": "Pending",
        "PROCESSING": "Processing",
        "RETURNED": "Returned",
    },
}

MONTH_ABBREVIATIONS = {
    "Jan": 1, "Feb": 2, "Mar": 3, "Apr": 4, "May": 5, "Jun": 6,
    "Jul": 7, "Aug": 8, "Sep": 9, "Oct": 10, "Nov": 11, "Dec": 12,
}

DATETIME_FORMATS = [
    '%Y-%m-%dT%H:%M:%S.%f%z', '%Y-%m-%dT%H:%M:%S%z', '%Y-%m-%dT%H:%M:%S.%f', '%Y-%m-%dT%H:%M:%S',
    '%Y-%m-%dT%H:%M', '%Y-%m-%d %H:%M:%S', '%Y-%m-%d %H:%M', '%Y-%m-%d', '%Y/%m/%d',
    '%d/%m/%Y %H:%M:%S', '%d/%m/%Y', '%d-%m-%Y %H:%M:%S', '%d-%m-%Y',
    '%d-%b-%Y', '%d %b %Y', '%d %B %Y', '%b %d, %Y',
]


def _canonicalize_header(header: str) -> str:
    return re.sub(r"[\s_\-]+", "", clean_cell(header).lower())


def resolve_alias(row: Mapping[str, Any], canonical_field: str, marketplace: str) -> str:
    """
    Return the first non-empty value among the aliases registered for
    (marketplace, canonical_field), or "" when none is present.
    Exact header names are tried first, then a case/separator-insensitive match.
    """
    aliases = HEADER_ALIASES.get(marketplace, {}).get(canonical_field)
    if aliases is None:
        aliases = PRODUCT_ALIASES.get(canonical_field, ())
    return _first_non_empty(row, aliases)


def _first_non_empty(row: Mapping[str, Any], aliases: Aliases) -> str:
    canonical_row: Optional[Dict[str, Any]] = None
    for alias in aliases:
        value = clean_cell(row.get(alias))
        if value:
            return value
        if canonical_row is None:
            canonical_row = {}
            for key, raw in row.items():
                if key is None:
                    continue
                canonical_row.setdefault(_canonicalize_header(key), raw)
        value = clean_cell(canonical_row.get(_canonicalize_header(alias)))
        if value:
            return value
    return ""


def parse_datetime(date_str: Optional[str]) -> Optional[datetime]:
    """Parse ISO-8601 and common export formats; None when unparseable."""
    ds = clean_cell(date_str)
    if not ds or ds.lower() in ('0000-00-00', 'n/a', 'null', 'nan'):
        return None
    if ds.endswith('Z'):
        ds = ds[:-1] + '+00:00'

    for fmt in DATETIME_FORMATS:
        try:
            dt = datetime.strptime(ds, fmt)
        except ValueError:
            continue
        if dt.tzinfo is not None:
            dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
        return dt

    try:
        dt = datetime.fromisoformat(ds)
    except ValueError:
        logger.debug(f"Could not parse datetime: {ds}")
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_flipkart_date(date_str: Optional[str]) -> Optional[datetime]:
    """
    Flipkart exports dates as DD-MMM-YY ("25-Jan-25"); two-digit years are 20YY.
    Anything else goes through the generic parser.
    """
    ds = clean_cell(date_str)
    if not ds:
        return None
    parts = ds.split("-")
    if len(parts) == 3 and parts[1].isalpha():
        day, month_abbr, year = (p.strip() for p in parts)
        month = MONTH_ABBREVIATIONS.get(month_abbr[:3].capitalize())
        if month is None or not day.isdigit() or not year.isdigit():
            return None
        full_year = int(year) + 2000 if len(year) <= 2 else int(year)
        try:
            return datetime(full_year, month, int(day))
        except ValueError:
            return None
    return parse_datetime(ds)


def derive_msku(sku: str) -> str:
    """Master SKU for an unmapped marketplace SKU: upper-cased, non-alphanumerics -> '-'."""
    return re.sub(r"[^A-Z0-9]", "-", sku.upper())


@dataclass
class CanonicalLineItem:
    sku: str
    name: str
    quantity: int = 1
    price: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")


@dataclass
class CanonicalOrderRow:
    order_id: str
    marketplace: str
    order_date: datetime
    status: str
    customer: Dict[str, Any]
    items: List[CanonicalLineItem]
    shipping: Dict[str, Any]
    order_item_id: Optional[str] = None
    order_total: Optional[Decimal] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CanonicalInventoryRow:
    sku: str
    marketplace: str
    quantity: int
    fulfillment_center: Optional[str] = None
    location: Optional[str] = None


@dataclass
class CanonicalProductRow:
    msku: str
    name: str
    marketplace: str
    sku: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    hsn_code: Optional[str] = None
    dimensions: Dict[str, float] = field(default_factory=dict)
    low_stock_threshold: Optional[int] = None
    quantity: int = 0
    identifiers: Dict[str, str] = field(default_factory=dict)


class FieldMapper:
    """Base mapper; subclasses pin the marketplace and its quirks."""

    marketplace = ""
    default_customer_name = "Unknown"
    identifier_fields: Tuple[str, ...] = ("ean", "upc", "isbn")

    def resolve(self, row: Mapping[str, Any], canonical_field: str) -> str:
        return resolve_alias(row, canonical_field, self.marketplace)

    def parse_date(self, raw: Optional[str]) -> Optional[datetime]:
        return parse_datetime(raw)

    def map_status(self, raw: Optional[str]) -> str:
        status = clean_cell(raw)
        if not status:
            return "Pending"
        table = STATUS_MAPS.get(self.marketplace, {})
        if status in table:
            return table[status]
        for key, value in table.items():
            if key.lower() == status.lower():
                return value
        return status

    def map_order_row(self, row: Mapping[str, Any], received_at: datetime) -> Optional[CanonicalOrderRow]:
        order_id = self.resolve(row, "order_id")
        if not order_id:
            return None

        sku = self.resolve(row, "sku")
        if not sku:
            return None
        item = CanonicalLineItem(
            sku=sku,
            name=self.resolve(row, "item_name") or sku,
            quantity=max(1, as_int(self.resolve(row, "quantity"), 1)),
            price=max(Decimal("0"), as_decimal(self.resolve(row, "price"))),
            tax=max(Decimal("0"), as_decimal(self.resolve(row, "tax"))),
        )

        raw_total = self.resolve(row, "order_total")
        order_date = self.parse_date(self.resolve(row, "order_date"))
        if order_date is None:
            order_date = received_at

        customer = {
            "name": self.resolve(row, "customer_name") or self.default_customer_name,
            "phone": self.resolve(row, "customer_phone") or None,
            "address": self.resolve(row, "address") or None,
            "city": self.resolve(row, "city") or None,
            "state": self.resolve(row, "state") or None,
            "pincode": self.resolve(row, "pincode") or None,
            "country": self.resolve(row, "country") or None,
        }
        shipping = {
            "shipmentId": self.resolve(row, "shipment_id") or None,
            "trackingId": self.resolve(row, "tracking_id") or None,
            "carrier": self.resolve(row, "carrier") or None,
            "dispatchAfter": self._iso(self.parse_date(self.resolve(row, "dispatch_after"))),
            "dispatchBy": self._iso(self.parse_date(self.resolve(row, "dispatch_by"))),
            "fulfillmentCenter": self.resolve(row, "fulfillment_center") or None,
        }

        return CanonicalOrderRow(
            order_id=order_id,
            order_item_id=self.resolve(row, "order_item_id") or None,
            marketplace=self.marketplace,
            order_date=order_date,
            status=self.map_status(self.resolve(row, "status")),
            customer=customer,
            items=[item],
            shipping=shipping,
            order_total=as_decimal(raw_total) if raw_total else None,
            payment_method=self.resolve(row, "payment_method") or None,
            raw={k: v for k, v in row.items() if k is not None},
        )

    def map_inventory_row(self, row: Mapping[str, Any]) -> Optional[CanonicalInventoryRow]:
        sku = self.resolve(row, "sku")
        if not sku:
            return None
        return CanonicalInventoryRow(
            sku=sku,
            marketplace=self.marketplace,
            quantity=max(0, as_int(self.resolve(row, "stock"), 0)),
            fulfillment_center=self.resolve(row, "fulfillment_center") or None,
            location=self.resolve(row, "location") or None,
        )

    def map_product_row(
        self, row: Mapping[str, Any], mappings: Optional[Mapping[str, str]] = None
    ) -> Optional[CanonicalProductRow]:
        mappings = mappings or {}
        sku = self.resolve(row, "sku")
        msku = self.resolve(row, "msku")
        if not msku and sku:
            msku = clean_cell(mappings.get(sku)) or derive_msku(sku)
        name = self.resolve(row, "name")
        if not msku or not name:
            return None

        dimensions = {}
        for dim in ("length", "breadth", "height", "weight"):
            value = self.resolve(row, dim)
            if value:
                dimensions[dim] = float(as_decimal(value))

        identifiers = {}
        for key in self.identifier_fields:
            value = self.resolve(row, key)
            if value:
                identifiers[key] = value

        threshold = self.resolve(row, "low_stock_threshold")
        return CanonicalProductRow(
            msku=msku,
            name=name,
            marketplace=self.marketplace,
            sku=sku or None,
            description=self.resolve(row, "description") or None,
            category=self.resolve(row, "category") or None,
            hsn_code=self.resolve(row, "hsn_code") or None,
            dimensions=dimensions,
            low_stock_threshold=as_int(threshold, 10) if threshold else None,
            quantity=max(0, as_int(self.resolve(row, "stock"), 0)),
            identifiers=identifiers,
        )

    @staticmethod
    def _iso(value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value else None


class AmazonFieldMapper(FieldMapper):
    marketplace = "Amazon"
    default_customer_name = "Amazon Customer"
    identifier_fields = ("asin", "fnsku", "ean", "upc", "isbn")


class FlipkartFieldMapper(FieldMapper):
    marketplace = "Flipkart"
    identifier_fields = ("fsn", "ean", "upc", "isbn")

    def parse_date(self, raw: Optional[str]) -> Optional[datetime]:
        return parse_flipkart_date(raw)


class MeeshoFieldMapper(FieldMapper):
    marketplace = "Meesho"


FIELD_MAPPERS = {
    "Amazon": AmazonFieldMapper,
    "Flipkart": FlipkartFieldMapper,
    "Meesho": MeeshoFieldMapper,
}


def get_field_mapper(marketplace: str) -> FieldMapper:
    try:
        return FIELD_MAPPERS[marketplace]()
    except KeyError:
        raise ValueError(f"No field mapper registered for marketplace {marketplace!r}")

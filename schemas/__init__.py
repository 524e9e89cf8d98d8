"""
Record Schemas Package
Response shapes shared by the product, SKU, inventory and order routers.
"""

from .records import (
    ProductDict,
    SkuDict,
    InventoryDict,
    OrderDict,
    serialize_product,
    serialize_sku,
    serialize_inventory,
    serialize_order,
)

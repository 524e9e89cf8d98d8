"""
Storage Service Layer
Async database operations for the Products, Skus, Inventory and Orders stores
"""
from sqlalchemy import select, delete, func, desc, or_, text, update
from typing import List, Optional, Dict, Any, Tuple
import logging
from datetime import datetime

from database import AsyncSessionLocal, Product, Sku, Inventory, Order
from utils import retry_async

logger = logging.getLogger(__name__)

class StorageService:
    """Storage service providing database operations"""

    def __init__(self, session_factory=None):
        # Tests bind their own engine; the app uses the module-level session factory
        self._session_factory = session_factory or AsyncSessionLocal

    def get_session(self):
        """Get database session context manager"""
        return self._session_factory()

    @retry_async(max_retries=2, base_delay=0.2)
    async def ping(self) -> None:
        """Quick DB smoke test; raises when the store is unreachable."""
        async with self.get_session() as session:
            await session.execute(text("SELECT 1"))

    # ---------- generic helpers ----------

    async def _create(self, model, data: Dict[str, Any]):
        async with self.get_session() as session:
            record = model(**data)
            session.add(record)
            await session.commit()
            await session.refresh(record)
            return record

    async def _update(self, model, record_id: str, updates: Dict[str, Any]):
        async with self.get_session() as session:
            record = await session.get(model, record_id)
            if record:
                for key, value in updates.items():
                    setattr(record, key, value)
                await session.commit()
                await session.refresh(record)
            return record

    async def _delete(self, model, record_id: str) -> bool:
        async with self.get_session() as session:
            result = await session.execute(delete(model).where(model.id == record_id))
            await session.commit()
            return (result.rowcount or 0) > 0

    # Product operations
    async def find_product(self, msku: str) -> Optional[Product]:
        """Get product by MSKU"""
        if not msku:
            return None
        async with self.get_session() as session:
            result = await session.execute(select(Product).where(Product.msku == msku))
            return result.scalars().first()

    async def get_product(self, product_id: str) -> Optional[Product]:
        async with self.get_session() as session:
            return await session.get(Product, product_id)

    async def list_products(self, search: Optional[str] = None, category: Optional[str] = None) -> List[Product]:
        async with self.get_session() as session:
            query = select(Product).order_by(Product.msku)
            if category:
                query = query.where(Product.category == category)
            if search:
                pattern = f"%{search}%"
                query = query.where(or_(Product.msku.ilike(pattern), Product.name.ilike(pattern)))
            result = await session.execute(query)
            return list(result.scalars().all())

    async def create_product(self, product_data: Dict[str, Any]) -> Product:
        return await self._create(Product, product_data)

    async def update_product(self, product_id: str, updates: Dict[str, Any]) -> Optional[Product]:
        return await self._update(Product, product_id, updates)

    async def rename_msku(self, old_msku: str, new_msku: str) -> None:
        """Propagate an MSKU change to every Sku and Inventory row referencing it."""
        async with self.get_session() as session:
            await session.execute(update(Sku).where(Sku.msku == old_msku).values(msku=new_msku))
            await session.execute(update(Inventory).where(Inventory.msku == old_msku).values(msku=new_msku))
            await session.commit()
        logger.info(f"Propagated MSKU change {old_msku} -> {new_msku}")

    async def delete_product(self, product_id: str) -> bool:
        """Delete a product together with its SKUs and inventory rows"""
        async with self.get_session() as session:
            product = await session.get(Product, product_id)
            if not product:
                return False
            await session.execute(delete(Inventory).where(Inventory.msku == product.msku))
            await session.execute(delete(Sku).where(Sku.msku == product.msku))
            await session.delete(product)
            await session.commit()
            return True

    # Sku operations
    async def find_sku(self, sku: str, marketplace: str) -> Optional[Sku]:
        """Exact lookup by (marketplace SKU, marketplace)"""
        if not sku:
            return None
        async with self.get_session() as session:
            result = await session.execute(
                select(Sku).where(Sku.sku == sku, Sku.marketplace == marketplace)
            )
            return result.scalars().first()

    async def get_sku(self, sku_id: str) -> Optional[Sku]:
        async with self.get_session() as session:
            return await session.get(Sku, sku_id)

    async def list_skus(self, msku: Optional[str] = None, marketplace: Optional[str] = None) -> List[Sku]:
        async with self.get_session() as session:
            query = select(Sku).order_by(Sku.msku, Sku.marketplace, Sku.sku)
            if msku:
                query = query.where(Sku.msku == msku)
            if marketplace:
                query = query.where(Sku.marketplace == marketplace)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def create_sku(self, sku_data: Dict[str, Any]) -> Sku:
        return await self._create(Sku, sku_data)

    async def update_sku(self, sku_id: str, updates: Dict[str, Any]) -> Optional[Sku]:
        return await self._update(Sku, sku_id, updates)

    async def delete_sku(self, sku_id: str) -> bool:
        """Delete a SKU binding and its inventory row"""
        async with self.get_session() as session:
            record = await session.get(Sku, sku_id)
            if not record:
                return False
            await session.execute(
                delete(Inventory).where(
                    Inventory.sku == record.sku, Inventory.marketplace == record.marketplace
                )
            )
            await session.delete(record)
            await session.commit()
            return True

    # Inventory operations
    async def find_inventory(self, sku: str, marketplace: str) -> Optional[Inventory]:
        """Import lookup by (marketplace SKU, marketplace)"""
        if not sku:
            return None
        async with self.get_session() as session:
            result = await session.execute(
                select(Inventory).where(Inventory.sku == sku, Inventory.marketplace == marketplace)
            )
            return result.scalars().first()

    async def get_inventory(self, inventory_id: str) -> Optional[Inventory]:
        async with self.get_session() as session:
            return await session.get(Inventory, inventory_id)

    async def list_inventory(self, msku: Optional[str] = None, marketplace: Optional[str] = None) -> List[Inventory]:
        async with self.get_session() as session:
            query = select(Inventory).order_by(Inventory.msku, Inventory.marketplace, Inventory.sku)
            if msku:
                query = query.where(Inventory.msku == msku)
            if marketplace:
                query = query.where(Inventory.marketplace == marketplace)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def create_inventory(self, inventory_data: Dict[str, Any]) -> Inventory:
        return await self._create(Inventory, inventory_data)

    async def update_inventory(self, inventory_id: str, updates: Dict[str, Any]) -> Optional[Inventory]:
        return await self._update(Inventory, inventory_id, updates)

    # Order operations
    async def find_order(self, order_id: str, marketplace: Optional[str] = None) -> Optional[Order]:
        """Lookup by external order id, optionally scoped to a marketplace"""
        if not order_id:
            return None
        async with self.get_session() as session:
            query = select(Order).where(Order.order_id == order_id)
            if marketplace:
                query = query.where(Order.marketplace == marketplace)
            result = await session.execute(query.limit(1))
            return result.scalars().first()

    async def get_order(self, order_pk: str) -> Optional[Order]:
        async with self.get_session() as session:
            return await session.get(Order, order_pk)

    async def list_orders(
        self,
        status: Optional[str] = None,
        marketplace: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Order], int]:
        """Filtered, newest-first page of orders plus the total match count"""
        conditions = []
        if status:
            conditions.append(Order.status == status)
        if marketplace:
            conditions.append(Order.marketplace == marketplace)
        if start_date:
            conditions.append(Order.order_date >= start_date)
        if end_date:
            conditions.append(Order.order_date <= end_date)
        if search:
            pattern = f"%{search}%"
            conditions.append(or_(Order.order_id.ilike(pattern), Order.order_item_id.ilike(pattern)))

        page = max(1, page)
        limit = max(1, min(limit, 200))
        async with self.get_session() as session:
            total = await session.scalar(select(func.count()).select_from(Order).where(*conditions))
            query = (
                select(Order)
                .where(*conditions)
                .order_by(desc(Order.order_date))
                .offset((page - 1) * limit)
                .limit(limit)
            )
            result = await session.execute(query)
            return list(result.scalars().all()), int(total or 0)

    async def create_order(self, order_data: Dict[str, Any]) -> Order:
        return await self._create(Order, order_data)

    async def update_order(self, order_pk: str, updates: Dict[str, Any]) -> Optional[Order]:
        return await self._update(Order, order_pk, updates)

    async def delete_order(self, order_pk: str) -> bool:
        return await self._delete(Order, order_pk)


storage = StorageService()


def get_storage() -> StorageService:
    """FastAPI dependency; tests override it with a store bound to their own engine."""
    return storage

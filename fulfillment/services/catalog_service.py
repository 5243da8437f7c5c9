import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import and_, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.exceptions import CategoryCycleError, RecordNotFound
from fulfillment.core.money import to_money
from fulfillment.database import transaction
from fulfillment.models.category import Category
from fulfillment.models.product import Product, ProductSupplier, product_categories
from fulfillment.models.supplier import Supplier

logger = logging.getLogger(__name__)


class CatalogService:
    """Category hierarchy and product junctions the order core relies on."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_category(self, category_id: int, lock: bool = False) -> Category:
        category = await self.db.get(
            Category, category_id, populate_existing=True, with_for_update=lock
        )
        if category is None:
            raise RecordNotFound("Category", category_id)
        return category

    async def _ancestor_ids(self, category_id: int, lock: bool = False) -> List[int]:
        """
        Ids from category_id up to its root, starting with category_id.

        With lock=True each row on the chain is locked FOR UPDATE, so a
        concurrent move cannot re-parent an ancestor until this transaction ends.
        """
        chain = []
        current: Optional[int] = category_id
        while current is not None and current not in chain:
            chain.append(current)
            stmt = select(Category.parent_id).where(Category.id == current)
            if lock:
                stmt = stmt.with_for_update()
            current = await self.db.scalar(stmt)
        return chain

    async def create_category(
        self,
        name: str,
        slug: str,
        parent_id: Optional[int] = None,
        description: Optional[str] = None,
    ) -> Category:
        async with transaction(self.db):
            if parent_id is not None:
                await self._get_category(parent_id)
            category = Category(name=name, slug=slug, parent_id=parent_id, description=description)
            self.db.add(category)
            await self.db.flush()
        logger.info(f"Category {slug} created")
        return category

    async def move_category(self, category_id: int, new_parent_id: Optional[int]) -> Category:
        """
        Re-parent a category. Moving it under itself or any of its
        descendants raises CategoryCycleError.
        """
        async with transaction(self.db):
            category = await self._get_category(category_id, lock=True)
            if new_parent_id is not None:
                await self._get_category(new_parent_id)
                if category_id in await self._ancestor_ids(new_parent_id, lock=True):
                    logger.warning(f"Category {category_id} cannot move under {new_parent_id}: cycle")
                    raise CategoryCycleError(category_id, new_parent_id)

            category.parent_id = new_parent_id
            await self.db.flush()
        return category

    async def category_path(self, category_id: int) -> List[Category]:
        """Categories from the root down to category_id."""
        async with transaction(self.db):
            await self._get_category(category_id)
            ids = await self._ancestor_ids(category_id)
            result = await self.db.execute(select(Category).where(Category.id.in_(ids)))
            by_id = {c.id: c for c in result.scalars().all()}
        return [by_id[i] for i in reversed(ids)]

    async def assign_category(self, product_id: int, category_id: int) -> None:
        async with transaction(self.db):
            if await self.db.get(Product, product_id) is None:
                raise RecordNotFound("Product", product_id)
            await self._get_category(category_id)

            exists = await self.db.scalar(
                select(product_categories.c.product_id).where(
                    and_(
                        product_categories.c.product_id == product_id,
                        product_categories.c.category_id == category_id,
                    )
                )
            )
            if exists is None:
                await self.db.execute(
                    insert(product_categories).values(product_id=product_id, category_id=category_id)
                )

    async def link_supplier(
        self,
        product_id: int,
        supplier_id: int,
        supplier_sku: Optional[str] = None,
        lead_time_days: int = 0,
        cost_price: Optional[Decimal] = None,
    ) -> ProductSupplier:
        """Create or update the product-supplier link."""
        async with transaction(self.db):
            if await self.db.get(Product, product_id) is None:
                raise RecordNotFound("Product", product_id)
            if await self.db.get(Supplier, supplier_id) is None:
                raise RecordNotFound("Supplier", supplier_id)

            link = await self.db.get(ProductSupplier, (product_id, supplier_id))
            if link is None:
                link = ProductSupplier(product_id=product_id, supplier_id=supplier_id)
                self.db.add(link)
            link.supplier_sku = supplier_sku
            link.lead_time_days = lead_time_days
            link.cost_price = to_money(cost_price) if cost_price is not None else None
            await self.db.flush()
        return link

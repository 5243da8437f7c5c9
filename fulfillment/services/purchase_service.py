"""
Purchase Order Service.

Replenishment path into the stock ledger: a PLACED purchase order, once
received, restocks every line at the receiving location.
"""
import logging
import uuid
from datetime import date
from typing import Iterable, Optional, Union

from sqlalchemy import and_, select, update
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.config import settings
from fulfillment.core.exceptions import InvalidTransition, RecordNotFound
from fulfillment.core.money import ZERO, line_total, to_money
from fulfillment.core.time import utcnow
from fulfillment.database import transaction
from fulfillment.models.inventory import MovementType
from fulfillment.models.product import Product
from fulfillment.models.purchase import PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatus
from fulfillment.models.supplier import Supplier
from fulfillment.schemas.purchase import PurchaseOrderItemCreate
from fulfillment.services.po_state_machine import validate_transition
from fulfillment.services.stock_ledger_service import StockLedgerService

logger = logging.getLogger(__name__)


class PurchaseOrderService:
    """Purchase order lifecycle: DRAFT -> PLACED -> RECEIVED, or CANCELLED."""

    def __init__(self, db: AsyncSession, ledger: Optional[StockLedgerService] = None):
        self.db = db
        self.ledger = ledger or StockLedgerService(db)

    def generate_po_number(self) -> str:
        """Generate unique PO number: PO-YYYYMMDD-XXXXXXXX"""
        today = utcnow().strftime("%Y%m%d")
        return f"{settings.PO_NUMBER_PREFIX}-{today}-{uuid.uuid4().hex[:8].upper()}"

    async def get_purchase_order(self, po_id: int) -> PurchaseOrder:
        async with transaction(self.db):
            result = await self.db.execute(
                select(PurchaseOrder)
                .options(selectinload(PurchaseOrder.items))
                .where(PurchaseOrder.id == po_id)
                .execution_options(populate_existing=True)
            )
            po = result.scalar_one_or_none()
        if po is None:
            raise RecordNotFound("PurchaseOrder", po_id)
        return po

    async def create_purchase_order(
        self,
        supplier_id: int,
        items: Iterable[Union[PurchaseOrderItemCreate, dict]],
        expected_delivery: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> PurchaseOrder:
        """Create a DRAFT purchase order; total_cost is the sum of line costs."""
        lines = [PurchaseOrderItemCreate.model_validate(item) for item in items]

        async with transaction(self.db):
            if await self.db.get(Supplier, supplier_id) is None:
                raise RecordNotFound("Supplier", supplier_id)

            total_cost = ZERO
            for line in lines:
                if await self.db.get(Product, line.product_id) is None:
                    raise RecordNotFound("Product", line.product_id)
                total_cost += line_total(line.unit_cost, line.quantity)

            po = PurchaseOrder(
                po_number=self.generate_po_number(),
                supplier_id=supplier_id,
                status=PurchaseOrderStatus.DRAFT.value,
                expected_delivery=expected_delivery,
                total_cost=total_cost,
                notes=notes,
            )
            self.db.add(po)
            await self.db.flush()

            for item_id, line in enumerate(lines, start=1):
                self.db.add(PurchaseOrderItem(
                    purchase_order_id=po.id,
                    item_id=item_id,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    unit_cost=to_money(line.unit_cost),
                ))
            await self.db.flush()

        logger.info(f"Purchase order {po.po_number} drafted: {len(lines)} lines, {total_cost}")
        return await self.get_purchase_order(po.id)

    async def _transition(self, po_id: int, target: PurchaseOrderStatus, **values) -> PurchaseOrder:
        po = await self.db.get(PurchaseOrder, po_id, populate_existing=True)
        if po is None:
            raise RecordNotFound("PurchaseOrder", po_id)

        current = po.status
        try:
            validate_transition(current, target.value)
        except InvalidTransition:
            logger.warning(f"Purchase order {po.po_number} cannot move from {current} to {target.value}")
            raise

        result = await self.db.execute(
            update(PurchaseOrder)
            .where(and_(PurchaseOrder.id == po_id, PurchaseOrder.status == current))
            .values(status=target.value, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            po = await self.db.get(PurchaseOrder, po_id, populate_existing=True)
            raise InvalidTransition("purchase order", po.status, target.value)

        logger.info(f"Purchase order {po.po_number}: {current} -> {target.value}")
        return po

    async def place(self, po_id: int) -> PurchaseOrder:
        async with transaction(self.db):
            await self._transition(po_id, PurchaseOrderStatus.PLACED, placed_at=utcnow())
        return await self.get_purchase_order(po_id)

    async def receive(self, po_id: int, location: Optional[str] = None) -> PurchaseOrder:
        """Receive a PLACED purchase order; every line restocks the location."""
        async with transaction(self.db):
            po = await self._transition(po_id, PurchaseOrderStatus.RECEIVED, received_at=utcnow())
            result = await self.db.execute(
                select(PurchaseOrderItem)
                .where(PurchaseOrderItem.purchase_order_id == po_id)
                .order_by(PurchaseOrderItem.item_id)
            )
            for item in result.scalars().all():
                await self.ledger.restock(
                    item.product_id,
                    location,
                    item.quantity,
                    reference=po.po_number,
                    movement_type=MovementType.IN,
                )
        return await self.get_purchase_order(po_id)

    async def cancel(self, po_id: int) -> PurchaseOrder:
        async with transaction(self.db):
            await self._transition(po_id, PurchaseOrderStatus.CANCELLED)
        return await self.get_purchase_order(po_id)

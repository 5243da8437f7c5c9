from typing import List, Optional
import logging
import uuid

from sqlalchemy import select, update, and_
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.config import settings
from fulfillment.core.enum_utils import get_enum_value
from fulfillment.core.exceptions import (
    FulfillmentError,
    InvalidTransition,
    ProductUnavailable,
    RecordNotFound,
)
from fulfillment.core.money import ZERO, line_total, to_money
from fulfillment.core.time import utcnow
from fulfillment.database import transaction
from fulfillment.models.customer import Address, Customer
from fulfillment.models.order import Order, OrderItem, OrderStatus, OrderStatusHistory
from fulfillment.models.product import Product
from fulfillment.schemas.order import OrderPlace
from fulfillment.services.coupon_service import CouponService
from fulfillment.services.order_state_machine import STATUS_TIMESTAMPS, validate_transition
from fulfillment.services.stock_ledger_service import StockLedgerService

logger = logging.getLogger(__name__)


class OrderService:
    """
    Order aggregate: placement, status transitions and the ledger effects
    tied to them.

    place() is one unit of work: reservations, coupon redemption and the
    order rows commit together or not at all.
    """

    def __init__(
        self,
        db: AsyncSession,
        ledger: Optional[StockLedgerService] = None,
        coupons: Optional[CouponService] = None,
    ):
        self.db = db
        self.ledger = ledger or StockLedgerService(db)
        self.coupons = coupons or CouponService(db)

    # ==================== ORDER NUMBER GENERATION ====================

    def generate_order_number(self) -> str:
        """Generate unique order number: ORD-YYYYMMDD-XXXXXXXX"""
        today = utcnow().strftime("%Y%m%d")
        return f"{settings.ORDER_NUMBER_PREFIX}-{today}-{uuid.uuid4().hex[:8].upper()}"

    # ==================== READS ====================

    async def _get_order_row(self, order_id: int) -> Optional[Order]:
        return await self.db.get(Order, order_id, populate_existing=True)

    async def get_order(self, order_id: int) -> Order:
        """Get order with items, history and payments loaded."""
        stmt = (
            select(Order)
            .options(
                selectinload(Order.items),
                selectinload(Order.status_history),
                selectinload(Order.payments),
            )
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        async with transaction(self.db):
            result = await self.db.execute(stmt)
            order = result.scalar_one_or_none()
        if order is None:
            raise RecordNotFound("Order", order_id)
        return order

    async def get_order_by_number(self, order_number: str) -> Order:
        async with transaction(self.db):
            order_id = await self.db.scalar(
                select(Order.id).where(Order.order_number == order_number)
            )
        if order_id is None:
            raise RecordNotFound("Order", order_number)
        return await self.get_order(order_id)

    async def list_orders(
        self,
        customer_id: Optional[int] = None,
        status: Optional[OrderStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[Order]:
        """Orders, newest first, with items loaded."""
        stmt = select(Order).options(selectinload(Order.items))

        filters = []
        if customer_id is not None:
            filters.append(Order.customer_id == customer_id)
        if status is not None:
            filters.append(Order.status == get_enum_value(status))
        if filters:
            stmt = stmt.where(and_(*filters))

        stmt = stmt.order_by(Order.placed_at.desc(), Order.id.desc()).offset(skip).limit(limit)
        async with transaction(self.db):
            result = await self.db.execute(stmt)
            return list(result.scalars().unique().all())

    # ==================== PLACEMENT ====================

    async def place(self, data: OrderPlace) -> Order:
        """
        Place an order in PENDING.

        Loads and snapshots every product, reserves stock per line, applies
        and redeems the coupon, then persists the order. Any failure rolls
        all of it back before the error reaches the caller.
        """
        location = data.location or settings.DEFAULT_LOCATION
        currency = data.currency or settings.DEFAULT_CURRENCY

        try:
            async with transaction(self.db):
                customer = await self.db.get(Customer, data.customer_id)
                if customer is None:
                    raise RecordNotFound("Customer", data.customer_id)

                for address_id in (data.shipping_address_id, data.billing_address_id):
                    if address_id is None:
                        continue
                    address = await self.db.get(Address, address_id)
                    if address is None or address.customer_id != customer.id:
                        raise RecordNotFound("Address", address_id)

                # Snapshot lines
                lines = []
                subtotal = ZERO
                for item_id, item in enumerate(data.items, start=1):
                    product = await self.db.get(Product, item.product_id)
                    if product is None:
                        raise RecordNotFound("Product", item.product_id)
                    if not product.active:
                        raise ProductUnavailable(product.id)

                    unit_price = to_money(product.price)
                    total_price = line_total(unit_price, item.quantity)
                    subtotal += total_price
                    lines.append({
                        "item_id": item_id,
                        "product_id": product.id,
                        "product_name": product.name,
                        "sku": product.sku,
                        "unit_price": unit_price,
                        "quantity": item.quantity,
                        "total_price": total_price,
                    })

                order_number = self.generate_order_number()

                # Reserve stock, first shortfall aborts the unit
                for line in lines:
                    handle = await self.ledger.reserve(
                        line["product_id"], location, line["quantity"], reference=order_number,
                    )
                    line["reservation_id"] = handle.reservation_id

                # Coupon
                discount_amount = ZERO
                coupon_id = None
                if data.coupon_code:
                    quote = await self.coupons.validate(data.coupon_code, subtotal)
                    await self.coupons.redeem(quote.code)
                    discount_amount = quote.discount_amount
                    coupon_id = quote.coupon_id

                shipping_cost = to_money(data.shipping_cost)
                total = subtotal + shipping_cost - discount_amount

                order = Order(
                    order_number=order_number,
                    customer_id=customer.id,
                    shipping_address_id=data.shipping_address_id,
                    billing_address_id=data.billing_address_id,
                    coupon_id=coupon_id,
                    status=OrderStatus.PENDING.value,
                    currency=currency,
                    subtotal=subtotal,
                    shipping_cost=shipping_cost,
                    discount_amount=discount_amount,
                    total=total,
                    notes=data.notes,
                    placed_at=utcnow(),
                )
                self.db.add(order)
                await self.db.flush()

                for line in lines:
                    self.db.add(OrderItem(order_id=order.id, **line))
                self._add_history(order.id, None, OrderStatus.PENDING.value, "Order placed")
                await self.db.flush()
        except FulfillmentError as e:
            logger.info(f"Order placement for customer {data.customer_id} rolled back: {e.message}")
            raise

        logger.info(f"Order {order.order_number} placed: {len(lines)} lines, total {total} {currency}")
        return await self.get_order(order.id)

    # ==================== TRANSITIONS ====================

    def _add_history(
        self,
        order_id: int,
        from_status: Optional[str],
        to_status: str,
        notes: Optional[str] = None,
    ) -> None:
        self.db.add(OrderStatusHistory(
            order_id=order_id,
            from_status=from_status,
            to_status=to_status,
            notes=notes,
            created_at=utcnow(),
        ))

    async def _transition(
        self,
        order_id: int,
        target: OrderStatus,
        notes: Optional[str] = None,
    ) -> Order:
        """
        Move an order to target with a guarded UPDATE on its current status.

        Must run inside a unit of work. A concurrent transition that lands
        first makes the guard miss and raises InvalidTransition.
        """
        order = await self._get_order_row(order_id)
        if order is None:
            raise RecordNotFound("Order", order_id)

        current = order.status
        try:
            validate_transition(current, target.value)
        except InvalidTransition:
            logger.warning(f"Order {order.order_number} cannot move from {current} to {target.value}")
            raise

        now = utcnow()
        values = {"status": target.value, "updated_at": now}
        stamp = STATUS_TIMESTAMPS.get(target.value)
        if stamp:
            values[stamp] = now

        result = await self.db.execute(
            update(Order)
            .where(and_(Order.id == order_id, Order.status == current))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            order = await self._get_order_row(order_id)
            logger.warning(
                f"Order {order.order_number} changed to {order.status} concurrently; "
                f"{target.value} not applied"
            )
            raise InvalidTransition("order", order.status, target.value)

        self._add_history(order_id, current, target.value, notes)
        await self.db.flush()
        logger.info(f"Order {order.order_number}: {current} -> {target.value}")
        return order

    async def _items(self, order_id: int) -> List[OrderItem]:
        result = await self.db.execute(
            select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.item_id)
        )
        return list(result.scalars().all())

    async def cancel(self, order_id: int, notes: Optional[str] = None) -> Order:
        """Cancel a PENDING order and release every line's reservation."""
        async with transaction(self.db):
            await self._transition(order_id, OrderStatus.CANCELLED, notes or "Order cancelled")
            for item in await self._items(order_id):
                if item.reservation_id is not None:
                    await self.ledger.release(item.reservation_id)
        return await self.get_order(order_id)

    async def mark_paid(self, order_id: int, notes: Optional[str] = None) -> Order:
        """PENDING -> PAID. Stock stays reserved until shipment."""
        async with transaction(self.db):
            await self._transition(order_id, OrderStatus.PAID, notes or "Payment completed")
        return await self.get_order(order_id)

    async def mark_shipped(self, order_id: int, notes: Optional[str] = None) -> Order:
        """Ship a PAID order, committing every line's reservation."""
        async with transaction(self.db):
            await self._transition(order_id, OrderStatus.SHIPPED, notes or "Order shipped")
            for item in await self._items(order_id):
                if item.reservation_id is not None:
                    await self.ledger.commit(item.reservation_id)
        return await self.get_order(order_id)

    async def mark_delivered(self, order_id: int, notes: Optional[str] = None) -> Order:
        async with transaction(self.db):
            await self._transition(order_id, OrderStatus.DELIVERED, notes or "Order delivered")
        return await self.get_order(order_id)

    async def refund(self, order_id: int, notes: Optional[str] = None) -> Order:
        """
        PAID -> REFUNDED.

        Reservations are left as they are; the abandoned-reservation sweep
        returns them to stock.
        """
        async with transaction(self.db):
            await self._transition(order_id, OrderStatus.REFUNDED, notes or "Order refunded")
        return await self.get_order(order_id)

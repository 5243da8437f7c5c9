"""
Payment Reconciler.

Records payment attempts and turns provider outcomes into order
transitions. Provider notifications arrive at least once, so completing,
failing or refunding a payment twice returns the payment unchanged.

At most one payment per order ends up COMPLETED, and it always matches the
order total and currency.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.enum_utils import get_enum_value
from fulfillment.core.exceptions import (
    AmountMismatch,
    CurrencyMismatch,
    DuplicatePayment,
    IntegrityViolation,
    InvalidTransition,
    RecordNotFound,
)
from fulfillment.core.money import ZERO, to_money
from fulfillment.core.time import ensure_utc, utcnow
from fulfillment.database import transaction
from fulfillment.models.order import Order, OrderStatus, Payment, PaymentStatus
from fulfillment.services.order_service import OrderService

logger = logging.getLogger(__name__)


class PaymentReconciler:
    """Keeps payments and order status consistent."""

    def __init__(self, db: AsyncSession, orders: Optional[OrderService] = None):
        self.db = db
        self.orders = orders or OrderService(db)

    # ==================== HELPERS ====================

    async def _get_payment(self, payment_id: int) -> Payment:
        payment = await self.db.get(Payment, payment_id, populate_existing=True)
        if payment is None:
            raise RecordNotFound("Payment", payment_id)
        return payment

    async def _get_order(self, order_id: int) -> Order:
        order = await self.db.get(Order, order_id, populate_existing=True)
        if order is None:
            raise RecordNotFound("Order", order_id)
        return order

    async def _find_by_reference(self, provider: str, provider_payment_id: str) -> Optional[Payment]:
        result = await self.db.execute(
            select(Payment)
            .where(
                and_(
                    Payment.provider == provider,
                    Payment.provider_payment_id == provider_payment_id,
                )
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _completed_payment_id(self, order_id: int, exclude_id: int) -> Optional[int]:
        return await self.db.scalar(
            select(Payment.id).where(
                and_(
                    Payment.order_id == order_id,
                    Payment.status == PaymentStatus.COMPLETED.value,
                    Payment.id != exclude_id,
                )
            )
        )

    async def _set_status(
        self,
        payment: Payment,
        expected: PaymentStatus,
        target: PaymentStatus,
        **values,
    ) -> bool:
        """Guarded payment status change. Returns False when the guard missed."""
        result = await self.db.execute(
            update(Payment)
            .where(and_(Payment.id == payment.id, Payment.status == expected.value))
            .values(status=target.value, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    # ==================== OPERATIONS ====================

    async def record_attempt(
        self,
        order_id: int,
        provider: str,
        amount: Decimal,
        currency: str,
        provider_payment_id: Optional[str] = None,
    ) -> Payment:
        """Append a PENDING payment for a PENDING order."""
        currency = currency.strip().upper()
        amount = to_money(amount)

        async with transaction(self.db):
            order = await self._get_order(order_id)

            if provider_payment_id:
                existing = await self._find_by_reference(provider, provider_payment_id)
                if existing is not None:
                    if existing.order_id != order.id:
                        logger.error(
                            f"Provider payment {provider}:{provider_payment_id} already recorded "
                            f"for order {existing.order_id}, not {order.id}"
                        )
                        raise IntegrityViolation(
                            "Provider payment reference belongs to another order",
                            details={"provider": provider, "provider_payment_id": provider_payment_id},
                        )
                    if currency != existing.currency:
                        logger.info(
                            f"Replayed attempt {provider}:{provider_payment_id} in {currency}, "
                            f"recorded in {existing.currency}"
                        )
                        raise CurrencyMismatch(existing.currency, currency)
                    if amount != to_money(existing.amount):
                        logger.info(
                            f"Replayed attempt {provider}:{provider_payment_id} for {amount}, "
                            f"recorded {existing.amount}"
                        )
                        raise AmountMismatch(to_money(existing.amount), amount)
                    logger.debug(f"Payment attempt {provider}:{provider_payment_id} already recorded")
                    return existing

            if currency != order.currency:
                logger.info(f"Payment for order {order.order_number} in {currency}, expected {order.currency}")
                raise CurrencyMismatch(order.currency, currency)

            if order.status != OrderStatus.PENDING.value:
                logger.warning(f"Payment attempt for order {order.order_number} in status {order.status}")
                raise InvalidTransition("order", order.status, OrderStatus.PAID.value)

            payment = Payment(
                order_id=order.id,
                provider=provider,
                provider_payment_id=provider_payment_id,
                amount=amount,
                currency=currency,
                status=PaymentStatus.PENDING.value,
                created_at=utcnow(),
            )
            self.db.add(payment)
            await self.db.flush()

        logger.info(f"Payment {payment.id} recorded for order {order.order_number}: {amount} {currency}")
        return payment

    async def mark_completed(self, payment_id: int, paid_at: Optional[datetime] = None) -> Payment:
        """
        Complete a payment and move its order PENDING -> PAID.

        No stock moves here; reservations are committed at shipment.
        """
        async with transaction(self.db):
            payment = await self._get_payment(payment_id)

            if payment.status == PaymentStatus.COMPLETED.value:
                logger.debug(f"Payment {payment_id} already completed")
                return payment
            if payment.status != PaymentStatus.PENDING.value:
                logger.warning(f"Payment {payment_id} cannot complete from {payment.status}")
                raise InvalidTransition("payment", payment.status, PaymentStatus.COMPLETED.value)

            order = await self._get_order(payment.order_id)
            expected = to_money(order.total)
            if to_money(payment.amount) != expected:
                logger.info(f"Payment {payment_id} amount {payment.amount} does not match order total {expected}")
                raise AmountMismatch(expected, to_money(payment.amount))
            if payment.currency != order.currency:
                logger.info(f"Payment {payment_id} currency {payment.currency}, order {order.currency}")
                raise CurrencyMismatch(order.currency, payment.currency)

            if await self._completed_payment_id(order.id, payment.id) is not None:
                logger.warning(f"Order {order.order_number} already paid; payment {payment_id} rejected")
                raise DuplicatePayment(order.id, payment.id)

            completed = await self._set_status(
                payment,
                PaymentStatus.PENDING,
                PaymentStatus.COMPLETED,
                paid_at=ensure_utc(paid_at) if paid_at else utcnow(),
            )
            if not completed:
                payment = await self._get_payment(payment_id)
                if payment.status == PaymentStatus.COMPLETED.value:
                    return payment
                logger.warning(f"Payment {payment_id} changed to {payment.status} concurrently")
                raise InvalidTransition("payment", payment.status, PaymentStatus.COMPLETED.value)

            try:
                await self.orders.mark_paid(order.id, notes=f"Payment {payment.id} completed")
            except InvalidTransition:
                order = await self._get_order(order.id)
                if (
                    order.status == OrderStatus.PAID.value
                    or await self._completed_payment_id(order.id, payment.id) is not None
                ):
                    logger.warning(f"Order {order.order_number} paid concurrently; payment {payment_id} rejected")
                    raise DuplicatePayment(order.id, payment.id)
                raise

            payment = await self._get_payment(payment_id)

        logger.info(f"Payment {payment.id} completed for order {order.order_number}")
        return payment

    async def mark_failed(self, payment_id: int) -> Payment:
        """Fail a pending payment. The order stays PENDING so the customer can retry."""
        async with transaction(self.db):
            payment = await self._get_payment(payment_id)

            if payment.status == PaymentStatus.FAILED.value:
                return payment
            if payment.status != PaymentStatus.PENDING.value:
                logger.warning(f"Payment {payment_id} cannot fail from {payment.status}")
                raise InvalidTransition("payment", payment.status, PaymentStatus.FAILED.value)

            if not await self._set_status(payment, PaymentStatus.PENDING, PaymentStatus.FAILED):
                payment = await self._get_payment(payment_id)
                if payment.status == PaymentStatus.FAILED.value:
                    return payment
                raise InvalidTransition("payment", payment.status, PaymentStatus.FAILED.value)

            payment = await self._get_payment(payment_id)

        logger.info(f"Payment {payment.id} failed for order {payment.order_id}")
        return payment

    async def mark_refunded(self, payment_id: int) -> Payment:
        """Refund a completed payment and move its PAID order to REFUNDED."""
        async with transaction(self.db):
            payment = await self._get_payment(payment_id)

            if payment.status == PaymentStatus.REFUNDED.value:
                return payment
            if payment.status != PaymentStatus.COMPLETED.value:
                logger.warning(f"Payment {payment_id} cannot be refunded from {payment.status}")
                raise InvalidTransition("payment", payment.status, PaymentStatus.REFUNDED.value)

            if not await self._set_status(payment, PaymentStatus.COMPLETED, PaymentStatus.REFUNDED):
                payment = await self._get_payment(payment_id)
                if payment.status == PaymentStatus.REFUNDED.value:
                    return payment
                raise InvalidTransition("payment", payment.status, PaymentStatus.REFUNDED.value)

            await self.orders.refund(payment.order_id, notes=f"Payment {payment.id} refunded")
            payment = await self._get_payment(payment_id)

        logger.info(f"Payment {payment.id} refunded for order {payment.order_id}")
        return payment

    async def apply_provider_event(
        self,
        provider: str,
        provider_payment_id: str,
        outcome: Union[PaymentStatus, str],
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
    ) -> Payment:
        """
        Apply a provider notification (COMPLETED or FAILED) to the matching
        payment. Redelivered notifications are no-ops.
        """
        outcome = get_enum_value(outcome).upper()

        async with transaction(self.db):
            payment = await self._find_by_reference(provider, provider_payment_id)
            if payment is None:
                logger.info(f"Provider event for unknown payment {provider}:{provider_payment_id}")
                raise RecordNotFound("Payment", f"{provider}:{provider_payment_id}")

            if amount is not None and to_money(amount) != to_money(payment.amount):
                logger.info(f"Provider reported {amount} for payment {payment.id}, recorded {payment.amount}")
                raise AmountMismatch(to_money(payment.amount), to_money(amount))
            if currency is not None and currency.strip().upper() != payment.currency:
                raise CurrencyMismatch(payment.currency, currency.strip().upper())

            if outcome == PaymentStatus.COMPLETED.value:
                return await self.mark_completed(payment.id)
            if outcome == PaymentStatus.FAILED.value:
                return await self.mark_failed(payment.id)

        logger.warning(f"Unsupported provider outcome {outcome} for payment {payment.id}")
        raise InvalidTransition("payment", payment.status, outcome)

    async def collected_amount(self, order_id: int) -> Decimal:
        """Sum of COMPLETED payments for an order."""
        async with transaction(self.db):
            total = await self.db.scalar(
                select(func.coalesce(func.sum(Payment.amount), 0)).where(
                    and_(
                        Payment.order_id == order_id,
                        Payment.status == PaymentStatus.COMPLETED.value,
                    )
                )
            )
        return to_money(Decimal(str(total))) if total else ZERO

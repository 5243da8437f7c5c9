"""
Reservation Jobs

Background sweep that returns held stock nobody is going to ship:
- PENDING orders older than RESERVATION_TTL_MINUTES are cancelled, which
  releases their reservations
- ACTIVE reservations backing REFUNDED orders are released
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fulfillment.config import settings
from fulfillment.core.exceptions import FulfillmentError, InvalidTransition, StateError
from fulfillment.core.time import ensure_utc, utcnow
from fulfillment.database import get_db_session, transaction
from fulfillment.models.inventory import ReservationStatus, StockReservation
from fulfillment.models.order import Order, OrderItem, OrderStatus
from fulfillment.services.order_service import OrderService
from fulfillment.services.stock_ledger_service import StockLedgerService

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Counters for one sweep run."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    cancelled_orders: List[str] = field(default_factory=list)
    skipped_orders: List[str] = field(default_factory=list)
    released_reservations: List[int] = field(default_factory=list)
    failures: int = 0

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()


async def _stale_pending_orders(session: AsyncSession, cutoff: datetime, limit: int) -> List[tuple]:
    async with transaction(session):
        result = await session.execute(
            select(Order.id, Order.order_number)
            .where(
                and_(
                    Order.status == OrderStatus.PENDING.value,
                    Order.placed_at < cutoff,
                )
            )
            .order_by(Order.placed_at)
            .limit(limit)
        )
        return list(result.all())


async def _orphaned_reservations(session: AsyncSession, limit: int) -> List[int]:
    async with transaction(session):
        result = await session.execute(
            select(StockReservation.id)
            .join(OrderItem, OrderItem.reservation_id == StockReservation.id)
            .join(Order, Order.id == OrderItem.order_id)
            .where(
                and_(
                    Order.status == OrderStatus.REFUNDED.value,
                    StockReservation.status == ReservationStatus.ACTIVE.value,
                )
            )
            .order_by(StockReservation.id)
            .limit(limit)
        )
        return list(result.scalars().all())


async def release_abandoned_reservations(
    now: Optional[datetime] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> SweepResult:
    """
    Cancel abandoned PENDING orders and release holds of refunded orders.

    Each order and reservation is handled in its own unit of work, so one
    failure never blocks the rest of the batch. An order paid while the
    sweep ran is skipped.
    """
    now = ensure_utc(now) if now else utcnow()
    cutoff = now - timedelta(minutes=settings.RESERVATION_TTL_MINUTES)
    batch_size = settings.RESERVATION_SWEEP_BATCH_SIZE
    result = SweepResult(started_at=utcnow())

    logger.info(f"Starting abandoned reservation sweep (cutoff {cutoff.isoformat()})...")

    async with get_db_session(session_factory) as session:
        orders = OrderService(session)
        ledger = StockLedgerService(session)

        for order_id, order_number in await _stale_pending_orders(session, cutoff, batch_size):
            try:
                await orders.cancel(order_id, notes="Abandoned checkout: reservation expired")
                result.cancelled_orders.append(order_number)
            except InvalidTransition:
                # Paid or cancelled since it was selected
                result.skipped_orders.append(order_number)
            except FulfillmentError as e:
                result.failures += 1
                logger.error(f"Sweep could not cancel order {order_number}: {e.message}")

        for reservation_id in await _orphaned_reservations(session, batch_size):
            try:
                await ledger.release(reservation_id)
                result.released_reservations.append(reservation_id)
            except StateError:
                # Released concurrently
                continue
            except FulfillmentError as e:
                result.failures += 1
                logger.error(f"Sweep could not release reservation {reservation_id}: {e.message}")

    result.finished_at = utcnow()
    logger.info(
        f"Reservation sweep completed: {len(result.cancelled_orders)} orders cancelled, "
        f"{len(result.skipped_orders)} skipped, {len(result.released_reservations)} reservations released, "
        f"{result.failures} failures in {result.duration_seconds:.2f}s"
    )
    return result

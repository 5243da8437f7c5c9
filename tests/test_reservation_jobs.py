"""Tests for the abandoned reservation sweep and its scheduler wiring."""

from datetime import timedelta
from decimal import Decimal

from fulfillment.config import settings
from fulfillment.core.time import utcnow
from fulfillment.jobs.reservation_jobs import release_abandoned_reservations
from fulfillment.jobs.scheduler import get_job_status, register_jobs, scheduler
from fulfillment.models import OrderStatus, ReservationStatus
from fulfillment.services.order_service import OrderService
from fulfillment.services.payment_reconciler import PaymentReconciler
from fulfillment.services.stock_ledger_service import StockLedgerService
from tests.helpers import balance, order_request


def _after_ttl():
    return utcnow() + timedelta(minutes=settings.RESERVATION_TTL_MINUTES + 1)


async def _place(session, seed, quantity=2):
    customer = await seed.customer()
    product = await seed.product(price="10.00")
    await seed.stock(product.id, 5)
    order = await OrderService(session).place(order_request(customer.id, (product.id, quantity)))
    return order, product


async def _pay(session, order):
    reconciler = PaymentReconciler(session)
    payment = await reconciler.record_attempt(order.id, "stripe", order.total, order.currency)
    return await reconciler.mark_completed(payment.id)


class TestSweep:
    async def test_stale_pending_order_cancelled(self, session, session_factory, seed):
        order, product = await _place(session, seed)

        result = await release_abandoned_reservations(now=_after_ttl(), session_factory=session_factory)

        assert result.cancelled_orders == [order.order_number]
        assert (await OrderService(session).get_order(order.id)).status == OrderStatus.CANCELLED.value
        assert (await balance(session_factory, product.id)).reserved == 0

    async def test_fresh_order_untouched(self, session, session_factory, seed):
        order, product = await _place(session, seed)

        result = await release_abandoned_reservations(session_factory=session_factory)

        assert result.cancelled_orders == []
        assert (await OrderService(session).get_order(order.id)).status == OrderStatus.PENDING.value
        assert (await balance(session_factory, product.id)).reserved == 2

    async def test_paid_order_untouched(self, session, session_factory, seed):
        order, product = await _place(session, seed)
        await _pay(session, order)

        result = await release_abandoned_reservations(now=_after_ttl(), session_factory=session_factory)

        assert result.cancelled_orders == []
        assert (await balance(session_factory, product.id)).reserved == 2

    async def test_refunded_order_reservations_released(self, session, session_factory, seed):
        order, product = await _place(session, seed)
        payment = await _pay(session, order)
        await PaymentReconciler(session).mark_refunded(payment.id)

        result = await release_abandoned_reservations(session_factory=session_factory)

        reservation_id = order.items[0].reservation_id
        assert result.released_reservations == [reservation_id]
        handle = await StockLedgerService(session).get_reservation(reservation_id)
        assert handle.status == ReservationStatus.RELEASED.value
        assert (await balance(session_factory, product.id)).reserved == 0

        again = await release_abandoned_reservations(session_factory=session_factory)
        assert again.released_reservations == []

    async def test_result_counts(self, session, session_factory, seed):
        await _place(session, seed)
        await _place(session, seed)

        result = await release_abandoned_reservations(now=_after_ttl(), session_factory=session_factory)

        assert len(result.cancelled_orders) == 2
        assert result.failures == 0
        assert result.duration_seconds >= 0


class TestScheduler:
    def test_sweep_job_registered(self):
        register_jobs()
        try:
            jobs = {job["id"]: job for job in get_job_status()}
            assert "release_abandoned_reservations" in jobs
            assert jobs["release_abandoned_reservations"]["trigger"].startswith("interval")
        finally:
            scheduler.remove_job("release_abandoned_reservations")

"""Tests for PaymentReconciler."""

from decimal import Decimal

import pytest

from fulfillment.core.exceptions import (
    AmountMismatch,
    CurrencyMismatch,
    DuplicatePayment,
    InvalidTransition,
    RecordNotFound,
)
from fulfillment.models import OrderStatus, PaymentStatus
from fulfillment.schemas.order import PaymentResponse
from fulfillment.services.order_service import OrderService
from fulfillment.services.payment_reconciler import PaymentReconciler
from tests.helpers import order_request


@pytest.fixture
async def order(session, seed):
    customer = await seed.customer()
    product = await seed.product(price="10.00")
    await seed.stock(product.id, 5)
    return await OrderService(session).place(order_request(customer.id, (product.id, 2)))


async def _status(session, order_id) -> str:
    return (await OrderService(session).get_order(order_id)).status


class TestRecordAttempt:
    async def test_records_pending_payment(self, session, order):
        payment = await PaymentReconciler(session).record_attempt(
            order.id, "stripe", Decimal("20.00"), "usd", provider_payment_id="pi_1"
        )

        assert payment.status == PaymentStatus.PENDING.value
        assert payment.currency == "USD"
        assert PaymentResponse.model_validate(payment).amount == Decimal("20.00")

    async def test_same_provider_reference_returns_existing(self, session, order):
        reconciler = PaymentReconciler(session)

        first = await reconciler.record_attempt(order.id, "stripe", Decimal("20.00"), "USD", "pi_1")
        again = await reconciler.record_attempt(order.id, "stripe", Decimal("20.00"), "USD", "pi_1")

        assert again.id == first.id

    async def test_replay_in_other_currency_rejected(self, session, order):
        reconciler = PaymentReconciler(session)
        await reconciler.record_attempt(order.id, "stripe", Decimal("20.00"), "USD", "pi_1")

        with pytest.raises(CurrencyMismatch):
            await reconciler.record_attempt(order.id, "stripe", Decimal("20.00"), "EUR", "pi_1")

    async def test_replay_with_other_amount_rejected(self, session, order):
        reconciler = PaymentReconciler(session)
        await reconciler.record_attempt(order.id, "stripe", Decimal("20.00"), "USD", "pi_1")

        with pytest.raises(AmountMismatch) as exc_info:
            await reconciler.record_attempt(order.id, "stripe", Decimal("99.00"), "USD", "pi_1")
        assert exc_info.value.expected == Decimal("20.00")

    async def test_currency_mismatch(self, session, order):
        with pytest.raises(CurrencyMismatch):
            await PaymentReconciler(session).record_attempt(order.id, "stripe", Decimal("20.00"), "EUR")

    async def test_order_must_be_pending(self, session, order):
        await OrderService(session).cancel(order.id)

        with pytest.raises(InvalidTransition):
            await PaymentReconciler(session).record_attempt(order.id, "stripe", Decimal("20.00"), "USD")


class TestMarkCompleted:
    async def test_completion_pays_order(self, session, order):
        reconciler = PaymentReconciler(session)
        payment = await reconciler.record_attempt(order.id, "stripe", Decimal("20.00"), "USD", "pi_1")

        completed = await reconciler.mark_completed(payment.id)

        assert completed.status == PaymentStatus.COMPLETED.value
        assert completed.paid_at is not None
        assert await _status(session, order.id) == OrderStatus.PAID.value
        assert await reconciler.collected_amount(order.id) == Decimal("20.00")

    async def test_duplicate_completion_is_idempotent(self, session, order):
        reconciler = PaymentReconciler(session)
        payment = await reconciler.record_attempt(order.id, "stripe", Decimal("20.00"), "USD", "pi_1")

        await reconciler.mark_completed(payment.id)
        again = await reconciler.mark_completed(payment.id)

        assert again.status == PaymentStatus.COMPLETED.value
        assert await reconciler.collected_amount(order.id) == Decimal("20.00")
        history = (await OrderService(session).get_order(order.id)).status_history
        assert [h.to_status for h in history].count(OrderStatus.PAID.value) == 1

    async def test_amount_mismatch_leaves_order_pending(self, session, order):
        reconciler = PaymentReconciler(session)
        payment = await reconciler.record_attempt(order.id, "stripe", Decimal("19.99"), "USD")

        with pytest.raises(AmountMismatch) as exc_info:
            await reconciler.mark_completed(payment.id)

        assert exc_info.value.expected == Decimal("20.00")
        assert await _status(session, order.id) == OrderStatus.PENDING.value

    async def test_second_payment_rejected(self, session, order):
        reconciler = PaymentReconciler(session)
        first = await reconciler.record_attempt(order.id, "stripe", Decimal("20.00"), "USD", "pi_1")
        second = await reconciler.record_attempt(order.id, "paypal", Decimal("20.00"), "USD", "pp_1")
        await reconciler.mark_completed(first.id)

        with pytest.raises(DuplicatePayment):
            await reconciler.mark_completed(second.id)

        assert await reconciler.collected_amount(order.id) == Decimal("20.00")

    async def test_cancelled_order_cannot_be_paid(self, session, order):
        reconciler = PaymentReconciler(session)
        payment = await reconciler.record_attempt(order.id, "stripe", Decimal("20.00"), "USD", "pi_1")
        await OrderService(session).cancel(order.id)

        with pytest.raises(InvalidTransition) as exc_info:
            await reconciler.mark_completed(payment.id)

        assert exc_info.value.current == OrderStatus.CANCELLED.value
        assert await _status(session, order.id) == OrderStatus.CANCELLED.value
        assert await reconciler.collected_amount(order.id) == Decimal("0.00")

    async def test_unknown_payment(self, session):
        with pytest.raises(RecordNotFound):
            await PaymentReconciler(session).mark_completed(9999)


class TestFailAndRefund:
    async def test_failure_keeps_order_open_for_retry(self, session, order):
        reconciler = PaymentReconciler(session)
        failed = await reconciler.record_attempt(order.id, "stripe", Decimal("20.00"), "USD", "pi_1")

        await reconciler.mark_failed(failed.id)
        again = await reconciler.mark_failed(failed.id)

        assert again.status == PaymentStatus.FAILED.value
        assert await _status(session, order.id) == OrderStatus.PENDING.value

        retry = await reconciler.record_attempt(order.id, "stripe", Decimal("20.00"), "USD", "pi_2")
        await reconciler.mark_completed(retry.id)
        assert await _status(session, order.id) == OrderStatus.PAID.value

    async def test_completed_payment_cannot_fail(self, session, order):
        reconciler = PaymentReconciler(session)
        payment = await reconciler.record_attempt(order.id, "stripe", Decimal("20.00"), "USD")
        await reconciler.mark_completed(payment.id)

        with pytest.raises(InvalidTransition):
            await reconciler.mark_failed(payment.id)

    async def test_refund_moves_order_to_refunded(self, session, order):
        reconciler = PaymentReconciler(session)
        payment = await reconciler.record_attempt(order.id, "stripe", Decimal("20.00"), "USD")
        await reconciler.mark_completed(payment.id)

        refunded = await reconciler.mark_refunded(payment.id)
        again = await reconciler.mark_refunded(payment.id)

        assert refunded.status == again.status == PaymentStatus.REFUNDED.value
        assert await _status(session, order.id) == OrderStatus.REFUNDED.value
        assert await reconciler.collected_amount(order.id) == Decimal("0.00")

    async def test_pending_payment_cannot_be_refunded(self, session, order):
        reconciler = PaymentReconciler(session)
        payment = await reconciler.record_attempt(order.id, "stripe", Decimal("20.00"), "USD")

        with pytest.raises(InvalidTransition):
            await reconciler.mark_refunded(payment.id)

    async def test_shipped_order_cannot_be_refunded(self, session, order):
        reconciler = PaymentReconciler(session)
        payment = await reconciler.record_attempt(order.id, "stripe", Decimal("20.00"), "USD")
        await reconciler.mark_completed(payment.id)
        await OrderService(session).mark_shipped(order.id)

        with pytest.raises(InvalidTransition):
            await reconciler.mark_refunded(payment.id)

        assert (await reconciler.collected_amount(order.id)) == Decimal("20.00")


class TestProviderEvents:
    async def test_redelivered_completion(self, session, order):
        reconciler = PaymentReconciler(session)
        await reconciler.record_attempt(order.id, "stripe", Decimal("20.00"), "USD", "pi_1")

        first = await reconciler.apply_provider_event("stripe", "pi_1", "completed", amount=Decimal("20.00"))
        second = await reconciler.apply_provider_event("stripe", "pi_1", PaymentStatus.COMPLETED)

        assert first.id == second.id
        assert second.status == PaymentStatus.COMPLETED.value
        assert await _status(session, order.id) == OrderStatus.PAID.value

    async def test_failure_event(self, session, order):
        reconciler = PaymentReconciler(session)
        await reconciler.record_attempt(order.id, "stripe", Decimal("20.00"), "USD", "pi_1")

        failed = await reconciler.apply_provider_event("stripe", "pi_1", "FAILED")

        assert failed.status == PaymentStatus.FAILED.value

    async def test_event_amount_must_match(self, session, order):
        reconciler = PaymentReconciler(session)
        await reconciler.record_attempt(order.id, "stripe", Decimal("20.00"), "USD", "pi_1")

        with pytest.raises(AmountMismatch):
            await reconciler.apply_provider_event("stripe", "pi_1", "COMPLETED", amount=Decimal("2.00"))

    async def test_unknown_reference(self, session):
        with pytest.raises(RecordNotFound):
            await PaymentReconciler(session).apply_provider_event("stripe", "pi_missing", "COMPLETED")

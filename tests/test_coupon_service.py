"""Tests for CouponService."""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from fulfillment.core.exceptions import (
    CouponBelowMinimum,
    CouponExhausted,
    CouponExpired,
    CouponInactive,
    CouponNotFound,
)
from fulfillment.core.time import utcnow
from fulfillment.models import DiscountType
from fulfillment.services.coupon_service import CouponService, compute_discount


class TestComputeDiscount:
    def test_percent_truncates_to_cent(self):
        # 15% of 19.99 = 2.9985
        assert compute_discount("PERCENT", Decimal("15"), Decimal("19.99")) == Decimal("2.99")

    def test_percent_capped_at_subtotal(self):
        assert compute_discount("PERCENT", Decimal("150"), Decimal("20.00")) == Decimal("20.00")

    def test_fixed_capped_at_subtotal(self):
        assert compute_discount("FIXED", Decimal("50.00"), Decimal("20.00")) == Decimal("20.00")
        assert compute_discount("FIXED", Decimal("5.00"), Decimal("20.00")) == Decimal("5.00")


class TestValidate:
    async def test_percent_quote(self, session, seed):
        await seed.coupon(code="SAVE10", value="10")

        quote = await CouponService(session).validate("SAVE10", Decimal("20.00"))

        assert quote.discount_amount == Decimal("2.00")
        assert quote.discounted_subtotal == Decimal("18.00")

    async def test_code_is_case_insensitive(self, session, seed):
        await seed.coupon(code="Spring5", discount_type=DiscountType.FIXED, value="5.00")

        quote = await CouponService(session).validate("  spring5 ", Decimal("30.00"))

        assert quote.code == "Spring5"
        assert quote.discount_amount == Decimal("5.00")

    async def test_validate_has_no_side_effects(self, session, seed):
        await seed.coupon(code="ONCE", usage_limit=1)
        service = CouponService(session)

        await service.validate("ONCE", Decimal("10.00"))
        await service.validate("ONCE", Decimal("10.00"))

        assert (await service.get_coupon("ONCE")).used_count == 0

    async def test_not_found(self, session):
        with pytest.raises(CouponNotFound):
            await CouponService(session).validate("NOPE", Decimal("10.00"))

    async def test_outside_window(self, session, seed):
        now = utcnow()
        await seed.coupon(code="LATE", valid_until=now - timedelta(days=1))
        await seed.coupon(code="EARLY", valid_from=now + timedelta(days=1))
        service = CouponService(session)

        with pytest.raises(CouponExpired):
            await service.validate("LATE", Decimal("10.00"), now=now)
        with pytest.raises(CouponExpired):
            await service.validate("EARLY", Decimal("10.00"), now=now)

    async def test_open_ended_window(self, session, seed):
        now = utcnow()
        await seed.coupon(code="OPEN", valid_from=now - timedelta(days=1))

        quote = await CouponService(session).validate("OPEN", Decimal("10.00"), now=now)

        assert quote.discount_amount == Decimal("1.00")

    async def test_inactive(self, session, seed):
        await seed.coupon(code="OFF", active=False)

        with pytest.raises(CouponInactive):
            await CouponService(session).validate("OFF", Decimal("10.00"))

    async def test_below_minimum(self, session, seed):
        await seed.coupon(code="BIG", min_order_total="50.00")

        with pytest.raises(CouponBelowMinimum) as exc_info:
            await CouponService(session).validate("BIG", Decimal("49.99"))
        assert exc_info.value.minimum == Decimal("50.00")

    async def test_exhausted(self, session, seed):
        await seed.coupon(code="GONE", usage_limit=2, used_count=2)

        with pytest.raises(CouponExhausted):
            await CouponService(session).validate("GONE", Decimal("10.00"))

    async def test_expiry_checked_before_minimum(self, session, seed):
        await seed.coupon(
            code="BOTH",
            min_order_total="100.00",
            valid_until=utcnow() - timedelta(hours=1),
        )

        with pytest.raises(CouponExpired):
            await CouponService(session).validate("BOTH", Decimal("1.00"))


class TestRedeem:
    async def test_redeem_increments_usage(self, session, seed):
        await seed.coupon(code="TWICE", usage_limit=2)
        service = CouponService(session)

        first = await service.redeem("twice")
        second = await service.redeem("TWICE")

        assert (first.used_count, second.used_count) == (1, 2)
        assert second.remaining_uses == 0
        with pytest.raises(CouponExhausted):
            await service.redeem("TWICE")

    async def test_unlimited_coupon(self, session, seed):
        await seed.coupon(code="FOREVER", usage_limit=None)
        service = CouponService(session)

        for _ in range(3):
            redemption = await service.redeem("FOREVER")

        assert redemption.used_count == 3
        assert redemption.remaining_uses is None

    async def test_inactive_coupon_not_redeemed(self, session, seed):
        await seed.coupon(code="PAUSED", active=False)

        with pytest.raises(CouponInactive):
            await CouponService(session).redeem("PAUSED")

    async def test_concurrent_redeems_respect_limit(self, session_factory, seed):
        await seed.coupon(code="RUSH", usage_limit=3)

        async def attempt():
            async with session_factory() as s:
                return await CouponService(s).redeem("RUSH")

        results = await asyncio.gather(*(attempt() for _ in range(6)), return_exceptions=True)

        assert sum(1 for r in results if not isinstance(r, Exception)) == 3
        assert sum(1 for r in results if isinstance(r, CouponExhausted)) == 3

        async with session_factory() as s:
            assert (await CouponService(s).get_coupon("RUSH")).used_count == 3

"""
Coupon Service.

validate() quotes a discount without side effects. redeem() consumes one use
with a guarded UPDATE, so at most `usage_limit` callers ever succeed no
matter how many race for the last use.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.exceptions import (
    CouponBelowMinimum,
    CouponExhausted,
    CouponExpired,
    CouponInactive,
    CouponNotFound,
)
from fulfillment.core.money import ZERO, percent_of, to_money
from fulfillment.core.time import ensure_utc, utcnow
from fulfillment.database import transaction
from fulfillment.models.coupon import Coupon, DiscountType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscountQuote:
    """Discount a coupon grants on a given subtotal."""
    coupon_id: int
    code: str
    discount_type: str
    discount_value: Decimal
    subtotal: Decimal
    discount_amount: Decimal

    @property
    def discounted_subtotal(self) -> Decimal:
        return self.subtotal - self.discount_amount


@dataclass(frozen=True)
class CouponRedemption:
    """Outcome of a successful redeem()."""
    coupon_id: int
    code: str
    used_count: int
    usage_limit: Optional[int]

    @property
    def remaining_uses(self) -> Optional[int]:
        if self.usage_limit is None:
            return None
        return self.usage_limit - self.used_count


def normalize_code(code: str) -> str:
    return code.strip().upper()


def compute_discount(discount_type: str, discount_value: Decimal, subtotal: Decimal) -> Decimal:
    """
    Discount for a subtotal, never more than the subtotal itself.

    PERCENT truncates to the cent; FIXED is the flat value.
    """
    subtotal = to_money(subtotal)
    if discount_type == DiscountType.PERCENT.value:
        discount = percent_of(subtotal, Decimal(discount_value))
    else:
        discount = to_money(discount_value)
    return max(ZERO, min(discount, subtotal))


class CouponService:
    """Coupon validation and redemption."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_by_code(self, code: str) -> Optional[Coupon]:
        result = await self.db.execute(
            select(Coupon)
            .where(func.upper(Coupon.code) == normalize_code(code))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_coupon(self, code: str) -> Coupon:
        async with transaction(self.db):
            coupon = await self._get_by_code(code)
        if coupon is None:
            raise CouponNotFound(code)
        return coupon

    async def validate(
        self,
        code: str,
        order_subtotal: Decimal,
        now: Optional[datetime] = None,
    ) -> DiscountQuote:
        """
        Check a coupon against a subtotal and quote the discount.

        Checks run in order: existence, validity window, active flag,
        minimum order total, remaining uses.
        """
        now = ensure_utc(now) if now else utcnow()
        subtotal = to_money(order_subtotal)

        async with transaction(self.db):
            coupon = await self._get_by_code(code)

        if coupon is None:
            logger.info(f"Coupon {code} not found")
            raise CouponNotFound(code)

        valid_from = ensure_utc(coupon.valid_from)
        valid_until = ensure_utc(coupon.valid_until)
        if (valid_from and now < valid_from) or (valid_until and now > valid_until):
            logger.info(f"Coupon {coupon.code} used outside its validity window")
            raise CouponExpired(coupon.code)

        if not coupon.active:
            logger.info(f"Coupon {coupon.code} is inactive")
            raise CouponInactive(coupon.code)

        minimum = to_money(coupon.min_order_total or ZERO)
        if subtotal < minimum:
            logger.info(f"Coupon {coupon.code} needs subtotal {minimum}, got {subtotal}")
            raise CouponBelowMinimum(coupon.code, subtotal, minimum)

        if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
            logger.info(f"Coupon {coupon.code} exhausted ({coupon.used_count}/{coupon.usage_limit})")
            raise CouponExhausted(coupon.code)

        return DiscountQuote(
            coupon_id=coupon.id,
            code=coupon.code,
            discount_type=coupon.discount_type,
            discount_value=Decimal(coupon.discount_value),
            subtotal=subtotal,
            discount_amount=compute_discount(coupon.discount_type, coupon.discount_value, subtotal),
        )

    async def redeem(self, code: str) -> CouponRedemption:
        """
        Consume one use of an active coupon.

        Raises CouponExhausted when the limit was reached, including when a
        concurrent caller took the last use first.
        """
        async with transaction(self.db):
            result = await self.db.execute(
                update(Coupon)
                .where(
                    and_(
                        func.upper(Coupon.code) == normalize_code(code),
                        Coupon.active.is_(True),
                        or_(
                            Coupon.usage_limit.is_(None),
                            Coupon.used_count < Coupon.usage_limit,
                        ),
                    )
                )
                .values(used_count=Coupon.used_count + 1)
                .execution_options(synchronize_session=False)
            )
            coupon = await self._get_by_code(code)

            if result.rowcount == 0:
                if coupon is None:
                    logger.info(f"Coupon {code} not found")
                    raise CouponNotFound(code)
                if not coupon.active:
                    logger.info(f"Coupon {coupon.code} is inactive")
                    raise CouponInactive(coupon.code)
                logger.info(f"Coupon {coupon.code} exhausted ({coupon.used_count}/{coupon.usage_limit})")
                raise CouponExhausted(coupon.code)

        logger.debug(f"Coupon {coupon.code} redeemed ({coupon.used_count}/{coupon.usage_limit})")
        return CouponRedemption(
            coupon_id=coupon.id,
            code=coupon.code,
            used_count=coupon.used_count,
            usage_limit=coupon.usage_limit,
        )

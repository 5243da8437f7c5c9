"""
Coupon model.

Supports percent and fixed discounts, a validity window and an optional
usage limit.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment.core.enum_utils import enum_check, enum_comment
from fulfillment.core.time import utcnow
from fulfillment.database import Base
from fulfillment.db_types import BigIntPK, UnitMoney


class DiscountType(str, Enum):
    """Discount type enumeration."""
    PERCENT = "PERCENT"  # e.g., 10% off
    FIXED = "FIXED"  # e.g., $5 off


class Coupon(Base):
    """
    Coupon/Promo code.

    used_count only moves through CouponService.redeem, which increments it
    with a guarded UPDATE.
    """
    __tablename__ = "coupons"
    __table_args__ = (
        CheckConstraint(enum_check("discount_type", DiscountType), name="ck_coupon_discount_type"),
        CheckConstraint("discount_value >= 0", name="ck_coupon_discount_value"),
        CheckConstraint("min_order_total >= 0", name="ck_coupon_min_order_total"),
        CheckConstraint("used_count >= 0", name="ck_coupon_used_count"),
        CheckConstraint(
            "usage_limit IS NULL OR used_count <= usage_limit",
            name="ck_coupon_usage_within_limit",
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    # Coupon Code
    code: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        comment="Unique coupon code (matched case-insensitively)"
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Discount Type & Value
    discount_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DiscountType.PERCENT.value,
        comment=enum_comment(DiscountType)
    )
    discount_value: Mapped[Decimal] = mapped_column(
        UnitMoney,
        nullable=False,
        comment="Percentage points for PERCENT, currency amount for FIXED"
    )
    min_order_total: Mapped[Decimal] = mapped_column(UnitMoney, nullable=False, default=Decimal("0.00"))

    # Validity Period (a null bound is open)
    valid_from: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    valid_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Usage Limits
    usage_limit: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Total redemptions allowed (null = unlimited)"
    )
    used_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Coupon {self.code} {self.used_count}/{self.usage_limit}>"

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment.core.enum_utils import enum_check, enum_comment
from fulfillment.core.time import utcnow
from fulfillment.database import Base
from fulfillment.db_types import BigIntPK, Money, UnitMoney

if TYPE_CHECKING:
    from fulfillment.models.coupon import Coupon
    from fulfillment.models.customer import Address, Customer
    from fulfillment.models.product import Product


class OrderStatus(str, Enum):
    """Order status enumeration."""
    PENDING = "PENDING"      # Placed, stock reserved, awaiting payment
    PAID = "PAID"            # Payment completed
    SHIPPED = "SHIPPED"      # Reservations committed, handed to carrier
    DELIVERED = "DELIVERED"  # Terminal

    CANCELLED = "CANCELLED"  # Terminal, reservations released
    REFUNDED = "REFUNDED"    # Terminal


class PaymentStatus(str, Enum):
    """Payment status enumeration."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class Order(Base):
    """
    Customer order.

    Totals are computed once at placement and never recomputed:
    total = subtotal + shipping_cost - discount_amount.
    Status changes go through OrderService only.
    """
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint(enum_check("status", OrderStatus), name="ck_order_status"),
        CheckConstraint("subtotal >= 0", name="ck_order_subtotal"),
        CheckConstraint("shipping_cost >= 0", name="ck_order_shipping_cost"),
        CheckConstraint("discount_amount >= 0", name="ck_order_discount_amount"),
        CheckConstraint("discount_amount <= subtotal", name="ck_order_discount_within_subtotal"),
        CheckConstraint("total >= 0", name="ck_order_total"),
        Index("ix_orders_status_placed_at", "status", "placed_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    order_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)

    customer_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("customers.id", ondelete="RESTRICT", onupdate="CASCADE"),
        nullable=False,
        index=True,
    )
    billing_address_id: Mapped[Optional[int]] = mapped_column(
        BigIntPK,
        ForeignKey("addresses.id", ondelete="SET NULL", onupdate="CASCADE"),
        nullable=True,
    )
    shipping_address_id: Mapped[Optional[int]] = mapped_column(
        BigIntPK,
        ForeignKey("addresses.id", ondelete="SET NULL", onupdate="CASCADE"),
        nullable=True,
    )
    coupon_id: Mapped[Optional[int]] = mapped_column(
        BigIntPK,
        ForeignKey("coupons.id", ondelete="SET NULL", onupdate="CASCADE"),
        nullable=True,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=OrderStatus.PENDING.value,
        nullable=False,
        index=True,
        comment=enum_comment(OrderStatus),
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    # Pricing
    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0.00"))
    shipping_cost: Mapped[Decimal] = mapped_column(UnitMoney, nullable=False, default=Decimal("0.00"))
    discount_amount: Mapped[Decimal] = mapped_column(UnitMoney, nullable=False, default=Decimal("0.00"))
    total: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0.00"))

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    placed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    shipped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    customer: Mapped["Customer"] = relationship("Customer", back_populates="orders")
    billing_address: Mapped[Optional["Address"]] = relationship("Address", foreign_keys=[billing_address_id])
    shipping_address: Mapped[Optional["Address"]] = relationship("Address", foreign_keys=[shipping_address_id])
    coupon: Mapped[Optional["Coupon"]] = relationship("Coupon")
    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.item_id",
    )
    status_history: Mapped[List["OrderStatusHistory"]] = relationship(
        "OrderStatusHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.id",
    )
    payments: Mapped[List["Payment"]] = relationship(
        "Payment",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Order(number='{self.order_number}', status='{self.status}')>"


class OrderItem(Base):
    """
    Order line item.

    Name, sku and unit price are copied from the product at placement so the
    order stays readable after catalog edits.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_item_quantity"),
        CheckConstraint("unit_price >= 0", name="ck_order_item_unit_price"),
        CheckConstraint("total_price >= 0", name="ck_order_item_total_price"),
    )

    order_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("orders.id", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )
    item_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    product_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("products.id", ondelete="RESTRICT", onupdate="CASCADE"),
        nullable=False,
        index=True,
    )

    # Product snapshot
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(UnitMoney, nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Money, nullable=False)

    # Stock hold backing this line
    reservation_id: Mapped[Optional[int]] = mapped_column(
        BigIntPK,
        ForeignKey("stock_reservations.id", ondelete="SET NULL"),
        nullable=True,
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")
    product: Mapped["Product"] = relationship("Product")

    def __repr__(self) -> str:
        return f"<OrderItem(product='{self.product_name}', qty={self.quantity})>"


class OrderStatusHistory(Base):
    """Order status change history."""
    __tablename__ = "order_status_history"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    from_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="status_history")

    def __repr__(self) -> str:
        return f"<OrderStatusHistory(from='{self.from_status}', to='{self.to_status}')>"


class Payment(Base):
    """Payment attempt against an order."""
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint(enum_check("status", PaymentStatus), name="ck_payment_status"),
        CheckConstraint("amount >= 0", name="ck_payment_amount"),
        UniqueConstraint("provider", "provider_payment_id", name="uq_payment_provider_reference"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("orders.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
        index=True,
    )

    # Provider reference
    provider: Mapped[str] = mapped_column(String(100), nullable=False)
    provider_payment_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING.value,
        nullable=False,
        comment=enum_comment(PaymentStatus),
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    order: Mapped["Order"] = relationship("Order", back_populates="payments")

    def __repr__(self) -> str:
        return f"<Payment(amount={self.amount}, status='{self.status}')>"

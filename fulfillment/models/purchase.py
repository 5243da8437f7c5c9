"""
Purchase order models.

A purchase order moves DRAFT -> PLACED -> RECEIVED (or CANCELLED); receipt
restocks every line through the stock ledger.
"""
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment.core.enum_utils import enum_check, enum_comment
from fulfillment.core.time import utcnow
from fulfillment.database import Base
from fulfillment.db_types import BigIntPK, Money, UnitMoney

if TYPE_CHECKING:
    from fulfillment.models.product import Product
    from fulfillment.models.supplier import Supplier


class PurchaseOrderStatus(str, Enum):
    """Purchase order status."""
    DRAFT = "DRAFT"
    PLACED = "PLACED"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"


class PurchaseOrder(Base):
    """
    Purchase Order model.
    Order placed with a supplier to replenish stock.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        CheckConstraint(enum_check("status", PurchaseOrderStatus), name="ck_po_status"),
        CheckConstraint("total_cost >= 0", name="ck_po_total_cost"),
        Index("ix_po_supplier_status", "supplier_id", "status"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    # Identification
    po_number: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        comment="PO-YYYYMMDD-XXXXXXXX"
    )
    supplier_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("suppliers.id", ondelete="RESTRICT", onupdate="CASCADE"),
        nullable=False,
    )

    # Status
    status: Mapped[str] = mapped_column(
        String(20),
        default=PurchaseOrderStatus.DRAFT.value,
        nullable=False,
        comment=enum_comment(PurchaseOrderStatus),
    )

    expected_delivery: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    total_cost: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0.00"))
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
    placed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    received_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    supplier: Mapped["Supplier"] = relationship("Supplier", back_populates="purchase_orders")
    items: Mapped[List["PurchaseOrderItem"]] = relationship(
        "PurchaseOrderItem",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.item_id",
    )

    def __repr__(self) -> str:
        return f"<PurchaseOrder(number='{self.po_number}', status='{self.status}')>"


class PurchaseOrderItem(Base):
    """Purchase order line item."""
    __tablename__ = "purchase_order_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_po_item_quantity"),
        CheckConstraint("unit_cost >= 0", name="ck_po_item_unit_cost"),
    )

    purchase_order_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("purchase_orders.id", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )
    item_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    product_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("products.id", ondelete="RESTRICT", onupdate="CASCADE"),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(UnitMoney, nullable=False)

    purchase_order: Mapped["PurchaseOrder"] = relationship("PurchaseOrder", back_populates="items")
    product: Mapped["Product"] = relationship("Product")

    @property
    def line_cost(self) -> Decimal:
        return self.unit_cost * self.quantity

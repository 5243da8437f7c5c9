"""Inventory models: stock levels, reservations, and the movement ledger."""
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment.core.enum_utils import enum_check, enum_comment
from fulfillment.core.time import utcnow
from fulfillment.database import Base
from fulfillment.db_types import BigIntPK
from fulfillment.models.product import Product


class MovementType(str, Enum):
    """Stock movement type enum."""
    IN = "IN"  # Goods received (purchase order receipt)
    OUT = "OUT"  # Reservation committed at shipment
    RESERVED = "RESERVED"  # Held for a pending order
    UNRESERVED = "UNRESERVED"  # Hold released
    ADJUSTMENT = "ADJUSTMENT"  # Manual correction, signed


class ReservationStatus(str, Enum):
    """Reservation handle lifecycle."""
    ACTIVE = "ACTIVE"
    COMMITTED = "COMMITTED"
    RELEASED = "RELEASED"


class InventoryRecord(Base):
    """
    Stock level per product per location.

    quantity is on hand; reserved is held for pending orders.
    Available to sell = quantity - reserved.
    """
    __tablename__ = "inventory"
    __table_args__ = (
        UniqueConstraint("product_id", "location", name="uq_inventory_product_location"),
        CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
        CheckConstraint("reserved >= 0", name="ck_inventory_reserved_non_negative"),
        CheckConstraint("reserved <= quantity", name="ck_inventory_reserved_within_quantity"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("products.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
        index=True,
    )
    location: Mapped[str] = mapped_column(String(100), nullable=False, default="main_warehouse")

    # Stock levels
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    product: Mapped["Product"] = relationship("Product")

    @property
    def available(self) -> int:
        """Available-to-sell quantity."""
        return self.quantity - self.reserved

    def __repr__(self) -> str:
        return f"<InventoryRecord product={self.product_id} location={self.location} {self.quantity}/{self.reserved}>"


class StockReservation(Base):
    """
    Durable reservation handle.

    A hold moves ACTIVE -> COMMITTED (shipped) or ACTIVE -> RELEASED
    (cancelled); both end states are final.
    """
    __tablename__ = "stock_reservations"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_reservation_quantity_positive"),
        CheckConstraint(enum_check("status", ReservationStatus), name="ck_reservation_status"),
        Index("ix_reservation_status_created", "status", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("products.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
        index=True,
    )
    location: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ReservationStatus.ACTIVE.value,
        comment=enum_comment(ReservationStatus),
    )
    reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<StockReservation {self.id} {self.status} qty={self.quantity}>"


class StockMovement(Base):
    """
    Append-only stock movement ledger.

    Folding a (product, location) pair's movements reproduces its
    InventoryRecord: IN/ADJUSTMENT move quantity, RESERVED/UNRESERVED move
    reserved, OUT moves both.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        CheckConstraint(enum_check("movement_type", MovementType), name="ck_movement_type"),
        Index("ix_stock_movement_product_location", "product_id", "location"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("products.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
        index=True,
    )
    movement_type: Mapped[str] = mapped_column(
        String(20), nullable=False, index=True, comment=enum_comment(MovementType)
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)  # Positive for in, negative for out
    location: Mapped[str] = mapped_column(String(100), nullable=False, default="main_warehouse")
    reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    reservation_id: Mapped[Optional[int]] = mapped_column(
        BigIntPK,
        ForeignKey("stock_reservations.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<StockMovement {self.movement_type} {self.quantity:+d} product={self.product_id}>"

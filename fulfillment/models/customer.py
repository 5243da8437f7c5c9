from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, CheckConstraint, Date, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment.core.enum_utils import enum_check, enum_comment
from fulfillment.core.time import utcnow
from fulfillment.database import Base
from fulfillment.db_types import BigIntPK

if TYPE_CHECKING:
    from fulfillment.models.order import Order


class Gender(str, Enum):
    """Gender enumeration for customer profiles."""
    MALE = "MALE"
    FEMALE = "FEMALE"
    OTHER = "OTHER"


class Customer(Base):
    """
    Customer account.
    Orders reference customers with ON DELETE RESTRICT: a customer with
    order history cannot be deleted.
    """
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(60), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    # Relationships
    profile: Mapped[Optional["CustomerProfile"]] = relationship(
        "CustomerProfile",
        back_populates="customer",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    addresses: Mapped[List["Address"]] = relationship(
        "Address",
        back_populates="customer",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    orders: Mapped[List["Order"]] = relationship(
        "Order",
        back_populates="customer",
        passive_deletes="all",
    )

    def __repr__(self) -> str:
        return f"<Customer {self.email}>"


class CustomerProfile(Base):
    """One-to-one profile; shares the customer's primary key."""
    __tablename__ = "customer_profiles"
    __table_args__ = (
        CheckConstraint(enum_check("gender", Gender), name="ck_profile_gender"),
    )

    customer_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("customers.id", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    gender: Mapped[Optional[str]] = mapped_column(String(10), nullable=True, comment=enum_comment(Gender))
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    customer: Mapped["Customer"] = relationship("Customer", back_populates="profile")


class Address(Base):
    """Customer address; one customer can have many."""
    __tablename__ = "addresses"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    customer_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("customers.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
        index=True,
    )
    label: Mapped[Optional[str]] = mapped_column(String(50), default="home")
    address_line1: Mapped[str] = mapped_column(String(255), nullable=False)
    address_line2: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    postal_code: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    country: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    customer: Mapped["Customer"] = relationship("Customer", back_populates="addresses")

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric,
    String, Table, Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment.core.time import utcnow
from fulfillment.database import Base
from fulfillment.db_types import BigIntPK, UnitMoney

if TYPE_CHECKING:
    from fulfillment.models.category import Category
    from fulfillment.models.supplier import Supplier


# Many-to-many: products <-> categories
product_categories = Table(
    "product_categories",
    Base.metadata,
    Column(
        "product_id",
        BigIntPK,
        ForeignKey("products.id", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    ),
    Column(
        "category_id",
        BigIntPK,
        ForeignKey("categories.id", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    ),
)


class Product(Base):
    """
    Sellable product.

    Orders never read price or name from here after placement; line items
    keep their own snapshot.
    """
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_product_price_non_negative"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    sku: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    short_description: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(UnitMoney, nullable=False)
    weight_kg: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 3), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    # Relationships
    categories: Mapped[List["Category"]] = relationship(
        "Category",
        secondary=product_categories,
        back_populates="products",
    )
    supplier_links: Mapped[List["ProductSupplier"]] = relationship(
        "ProductSupplier",
        back_populates="product",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Product {self.sku}>"


class ProductSupplier(Base):
    """Many-to-many: products <-> suppliers, with supplier SKU and lead time."""
    __tablename__ = "product_suppliers"
    __table_args__ = (
        CheckConstraint("cost_price IS NULL OR cost_price >= 0", name="ck_product_supplier_cost"),
        CheckConstraint("lead_time_days >= 0", name="ck_product_supplier_lead_time"),
    )

    product_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("products.id", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )
    supplier_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("suppliers.id", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )
    supplier_sku: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    lead_time_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cost_price: Mapped[Optional[Decimal]] = mapped_column(UnitMoney, nullable=True)

    product: Mapped["Product"] = relationship("Product", back_populates="supplier_links")
    supplier: Mapped["Supplier"] = relationship("Supplier", back_populates="product_links")

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment.core.time import utcnow
from fulfillment.database import Base
from fulfillment.db_types import BigIntPK

if TYPE_CHECKING:
    from fulfillment.models.product import Product


class Category(Base):
    """
    Product category with hierarchical support.
    Examples: Home > Kitchen > Cookware

    The hierarchy is an adjacency list on integer ids; cycles are rejected
    by CatalogService before any parent_id write.
    """
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    slug: Mapped[str] = mapped_column(String(150), unique=True, nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Self-referential for hierarchy
    parent_id: Mapped[Optional[int]] = mapped_column(
        BigIntPK,
        ForeignKey("categories.id", ondelete="SET NULL", onupdate="CASCADE"),
        nullable=True,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    products: Mapped[List["Product"]] = relationship(
        "Product",
        secondary="product_categories",
        back_populates="categories",
    )

    def __repr__(self) -> str:
        return f"<Category {self.slug}>"

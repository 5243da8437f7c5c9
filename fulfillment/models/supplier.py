from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment.core.time import utcnow
from fulfillment.database import Base
from fulfillment.db_types import BigIntPK

if TYPE_CHECKING:
    from fulfillment.models.product import ProductSupplier
    from fulfillment.models.purchase import PurchaseOrder


class Supplier(Base):
    """Supplier of restocked goods."""
    __tablename__ = "suppliers"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    contact_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    contact_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    product_links: Mapped[List["ProductSupplier"]] = relationship(
        "ProductSupplier",
        back_populates="supplier",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    purchase_orders: Mapped[List["PurchaseOrder"]] = relationship(
        "PurchaseOrder",
        back_populates="supplier",
        passive_deletes="all",
    )

    def __repr__(self) -> str:
        return f"<Supplier {self.name}>"

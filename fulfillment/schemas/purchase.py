from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import Field

from fulfillment.schemas.base import BaseCreateSchema


class PurchaseOrderItemCreate(BaseCreateSchema):
    """Purchase order line."""
    product_id: int
    quantity: int = Field(..., ge=1)
    unit_cost: Decimal = Field(..., ge=0)


class PurchaseOrderCreate(BaseCreateSchema):
    """Input to PurchaseOrderService.create_purchase_order."""
    supplier_id: int
    items: List[PurchaseOrderItemCreate] = Field(..., min_length=1)
    expected_delivery: Optional[date] = None
    notes: Optional[str] = None

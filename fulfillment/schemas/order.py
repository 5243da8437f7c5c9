from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field, field_validator

from fulfillment.schemas.base import BaseCreateSchema, BaseResponseSchema


# ==================== ORDER ITEM SCHEMAS ====================

class OrderItemCreate(BaseCreateSchema):
    """Order line requested by the customer."""
    product_id: int
    quantity: int = Field(..., ge=1)


class OrderItemResponse(BaseResponseSchema):
    """Order item response schema."""
    item_id: int
    product_id: int
    product_name: str
    sku: str
    unit_price: Decimal
    quantity: int
    total_price: Decimal
    reservation_id: Optional[int] = None


# ==================== ORDER SCHEMAS ====================

class OrderPlace(BaseCreateSchema):
    """Input to OrderService.place."""
    customer_id: int
    items: List[OrderItemCreate] = Field(..., min_length=1)
    shipping_address_id: Optional[int] = None
    billing_address_id: Optional[int] = None
    coupon_code: Optional[str] = None
    shipping_cost: Decimal = Field(Decimal("0.00"), ge=0)
    location: Optional[str] = None
    currency: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("coupon_code")
    @classmethod
    def blank_coupon_is_none(cls, v):
        return v or None

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v):
        if v is None:
            return v
        v = v.upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError("currency must be a 3-letter ISO code")
        return v


class OrderStatusHistoryResponse(BaseResponseSchema):
    from_status: Optional[str] = None
    to_status: str
    notes: Optional[str] = None
    created_at: datetime


class OrderResponse(BaseResponseSchema):
    """Order response schema."""
    id: int
    order_number: str
    customer_id: int
    status: str  # VARCHAR in DB
    currency: str
    subtotal: Decimal
    shipping_cost: Decimal
    discount_amount: Decimal
    total: Decimal
    coupon_id: Optional[int] = None
    placed_at: datetime
    items: List[OrderItemResponse] = []
    status_history: List[OrderStatusHistoryResponse] = []


# ==================== PAYMENT SCHEMAS ====================

class PaymentResponse(BaseResponseSchema):
    """Payment response schema."""
    id: int
    order_id: int
    provider: str
    provider_payment_id: Optional[str] = None
    amount: Decimal
    currency: str
    status: str
    paid_at: Optional[datetime] = None

from fulfillment.schemas.order import (
    OrderItemCreate,
    OrderItemResponse,
    OrderPlace,
    OrderResponse,
    PaymentResponse,
)
from fulfillment.schemas.purchase import PurchaseOrderCreate, PurchaseOrderItemCreate

__all__ = [
    "OrderItemCreate",
    "OrderItemResponse",
    "OrderPlace",
    "OrderResponse",
    "PaymentResponse",
    "PurchaseOrderCreate",
    "PurchaseOrderItemCreate",
]

# Models module; importing it registers every table on Base.metadata
from fulfillment.models.customer import Address, Customer, CustomerProfile, Gender
from fulfillment.models.category import Category
from fulfillment.models.supplier import Supplier
from fulfillment.models.product import Product, ProductSupplier, product_categories
from fulfillment.models.inventory import (
    InventoryRecord,
    MovementType,
    ReservationStatus,
    StockMovement,
    StockReservation,
)
from fulfillment.models.coupon import Coupon, DiscountType
from fulfillment.models.order import (
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusHistory,
    Payment,
    PaymentStatus,
)
from fulfillment.models.product_review import ProductReview
from fulfillment.models.purchase import PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatus

__all__ = [
    # Customers
    "Customer",
    "CustomerProfile",
    "Address",
    "Gender",
    # Catalog
    "Category",
    "Supplier",
    "Product",
    "ProductSupplier",
    "product_categories",
    "ProductReview",
    # Inventory
    "InventoryRecord",
    "StockMovement",
    "StockReservation",
    "MovementType",
    "ReservationStatus",
    # Coupons
    "Coupon",
    "DiscountType",
    # Orders
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderStatusHistory",
    "Payment",
    "PaymentStatus",
    # Purchasing
    "PurchaseOrder",
    "PurchaseOrderItem",
    "PurchaseOrderStatus",
]

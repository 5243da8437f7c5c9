# Services module
from fulfillment.services.stock_ledger_service import (
    LedgerBalance,
    ReservationHandle,
    StockLedgerService,
)
from fulfillment.services.coupon_service import CouponRedemption, CouponService, DiscountQuote
from fulfillment.services.order_service import OrderService
from fulfillment.services.payment_reconciler import PaymentReconciler
from fulfillment.services.purchase_service import PurchaseOrderService
from fulfillment.services.catalog_service import CatalogService

__all__ = [
    "StockLedgerService",
    "ReservationHandle",
    "LedgerBalance",
    "CouponService",
    "DiscountQuote",
    "CouponRedemption",
    "OrderService",
    "PaymentReconciler",
    "PurchaseOrderService",
    "CatalogService",
]

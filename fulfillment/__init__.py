"""Storefront fulfillment core: stock ledger, coupons, orders and payments."""

__version__ = "1.0.0"

"""Database-agnostic type definitions for SQLAlchemy models.

This module provides type definitions that work with both SQLite and PostgreSQL.
"""
from sqlalchemy import BigInteger, Integer, Numeric

# BIGINT surrogate keys; SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")

# Order-level amounts (subtotal, total, payment amount)
Money = Numeric(12, 2)

# Unit-level amounts (unit price, shipping, discount, coupon value)
UnitMoney = Numeric(10, 2)

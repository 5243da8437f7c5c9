"""
Shared pytest fixtures for the fulfillment tests.

Every test gets its own file-backed SQLite database under tmp_path, built
with the same engine factory and schema bootstrap as production. Sessions
from `session_factory` each hold their own connection, so concurrent tests
race through the store's locking rather than shared Python state.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from fulfillment.database import build_engine, build_session_factory, init_db, transaction
from fulfillment.models import (
    Address,
    Coupon,
    Customer,
    DiscountType,
    Product,
    Supplier,
)
from fulfillment.services.stock_ledger_service import LedgerBalance, StockLedgerService

from tests.helpers import LOCATION


# ============================================================================
# Database fixtures
# ============================================================================


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'fulfillment.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ============================================================================
# Seed data
# ============================================================================


class Seeder:
    """Creates reference rows, each in its own committed unit of work."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _add(self, obj):
        async with self.session_factory() as session:
            async with transaction(session):
                session.add(obj)
                await session.flush()
        return obj

    async def customer(self, email: Optional[str] = None) -> Customer:
        return await self._add(Customer(
            email=email or f"{uuid4().hex[:10]}@example.com",
            password_hash="x" * 60,
        ))

    async def address(self, customer_id: int, city: str = "Springfield") -> Address:
        return await self._add(Address(
            customer_id=customer_id,
            address_line1="1 Main St",
            city=city,
            country="US",
        ))

    async def product(
        self,
        price: str = "10.00",
        name: str = "Widget",
        active: bool = True,
    ) -> Product:
        return await self._add(Product(
            sku=f"SKU-{uuid4().hex[:8].upper()}",
            name=name,
            price=Decimal(price),
            active=active,
        ))

    async def supplier(self, name: str = "Acme Supply") -> Supplier:
        return await self._add(Supplier(name=name))

    async def stock(self, product_id: int, quantity: int, location: str = LOCATION) -> LedgerBalance:
        async with self.session_factory() as session:
            return await StockLedgerService(session).restock(
                product_id, location, quantity, reference="seed"
            )

    async def coupon(
        self,
        code: str = "SAVE10",
        discount_type: DiscountType = DiscountType.PERCENT,
        value: str = "10",
        usage_limit: Optional[int] = None,
        min_order_total: str = "0.00",
        active: bool = True,
        valid_from: Optional[datetime] = None,
        valid_until: Optional[datetime] = None,
        used_count: int = 0,
    ) -> Coupon:
        return await self._add(Coupon(
            code=code,
            discount_type=discount_type.value,
            discount_value=Decimal(value),
            min_order_total=Decimal(min_order_total),
            usage_limit=usage_limit,
            used_count=used_count,
            active=active,
            valid_from=valid_from,
            valid_until=valid_until,
        ))


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


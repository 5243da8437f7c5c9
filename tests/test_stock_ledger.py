"""Tests for StockLedgerService."""

import asyncio

import pytest
from sqlalchemy import update

from fulfillment.core.exceptions import (
    AlreadyReleased,
    InsufficientStock,
    InvalidQuantity,
    InvalidReservation,
    LedgerIntegrityError,
    RecordNotFound,
)
from fulfillment.database import transaction
from fulfillment.models import InventoryRecord, MovementType, ReservationStatus
from fulfillment.services.stock_ledger_service import StockLedgerService
from tests.helpers import LOCATION, balance


class TestReserve:
    async def test_reserve_holds_stock(self, session, seed):
        product = await seed.product()
        await seed.stock(product.id, 10)

        ledger = StockLedgerService(session)
        handle = await ledger.reserve(product.id, LOCATION, 3, reference="ORD-1")

        assert handle.status == ReservationStatus.ACTIVE.value
        assert handle.quantity == 3
        assert handle.is_active

        current = await ledger.get_balance(product.id, LOCATION)
        assert (current.quantity, current.reserved, current.available) == (10, 3, 7)

        movements = await ledger.get_movements(product.id, LOCATION)
        assert [m.movement_type for m in movements] == [MovementType.IN.value, MovementType.RESERVED.value]
        assert movements[-1].quantity == 3
        assert movements[-1].reservation_id == handle.reservation_id

    async def test_reserve_more_than_available(self, session, seed):
        product = await seed.product()
        await seed.stock(product.id, 2)

        ledger = StockLedgerService(session)
        with pytest.raises(InsufficientStock) as exc_info:
            await ledger.reserve(product.id, LOCATION, 3)

        assert exc_info.value.requested == 3
        assert exc_info.value.available == 2
        assert (await ledger.get_balance(product.id, LOCATION)).reserved == 0

    async def test_missing_inventory_row_counts_as_zero(self, session, seed):
        product = await seed.product()

        with pytest.raises(InsufficientStock) as exc_info:
            await StockLedgerService(session).reserve(product.id, LOCATION, 1)

        assert exc_info.value.available == 0

    @pytest.mark.parametrize("quantity", [0, -2])
    async def test_non_positive_quantity_rejected(self, session, seed, quantity):
        product = await seed.product()
        await seed.stock(product.id, 5)

        with pytest.raises(InvalidQuantity):
            await StockLedgerService(session).reserve(product.id, LOCATION, quantity)

    async def test_concurrent_reserves_never_oversell(self, session_factory, seed):
        product = await seed.product()
        await seed.stock(product.id, 5)

        async def attempt():
            async with session_factory() as s:
                return await StockLedgerService(s).reserve(product.id, LOCATION, 1)

        results = await asyncio.gather(*(attempt() for _ in range(8)), return_exceptions=True)

        succeeded = [r for r in results if not isinstance(r, Exception)]
        refused = [r for r in results if isinstance(r, InsufficientStock)]
        assert len(succeeded) == 5
        assert len(refused) == 3

        current = await balance(session_factory, product.id)
        assert current.reserved == 5
        assert current.available == 0


class TestReleaseAndCommit:
    async def test_release_returns_stock(self, session, seed):
        product = await seed.product()
        await seed.stock(product.id, 4)
        ledger = StockLedgerService(session)

        handle = await ledger.reserve(product.id, LOCATION, 4)
        released = await ledger.release(handle)

        assert released.status == ReservationStatus.RELEASED.value
        current = await ledger.get_balance(product.id, LOCATION)
        assert (current.quantity, current.reserved) == (4, 0)

    async def test_commit_consumes_stock(self, session, seed):
        product = await seed.product()
        await seed.stock(product.id, 4)
        ledger = StockLedgerService(session)

        handle = await ledger.reserve(product.id, LOCATION, 3)
        committed = await ledger.commit(handle.reservation_id)

        assert committed.status == ReservationStatus.COMMITTED.value
        current = await ledger.get_balance(product.id, LOCATION)
        assert (current.quantity, current.reserved) == (1, 0)

    async def test_release_twice_raises_already_released(self, session, seed):
        product = await seed.product()
        await seed.stock(product.id, 4)
        ledger = StockLedgerService(session)

        handle = await ledger.reserve(product.id, LOCATION, 2)
        await ledger.release(handle)

        with pytest.raises(AlreadyReleased):
            await ledger.release(handle)
        assert (await ledger.get_balance(product.id, LOCATION)).reserved == 0

    async def test_commit_then_release_rejected(self, session, seed):
        product = await seed.product()
        await seed.stock(product.id, 4)
        ledger = StockLedgerService(session)

        handle = await ledger.reserve(product.id, LOCATION, 2)
        await ledger.commit(handle)

        with pytest.raises(InvalidReservation) as exc_info:
            await ledger.release(handle)
        assert exc_info.value.status == ReservationStatus.COMMITTED.value

        current = await ledger.get_balance(product.id, LOCATION)
        assert (current.quantity, current.reserved) == (2, 0)

    async def test_commit_twice_rejected(self, session, seed):
        product = await seed.product()
        await seed.stock(product.id, 4)
        ledger = StockLedgerService(session)

        handle = await ledger.reserve(product.id, LOCATION, 1)
        await ledger.commit(handle)

        with pytest.raises(InvalidReservation):
            await ledger.commit(handle)

    async def test_unknown_reservation(self, session):
        ledger = StockLedgerService(session)

        with pytest.raises(InvalidReservation):
            await ledger.release(9999)
        with pytest.raises(RecordNotFound):
            await ledger.get_reservation(9999)


class TestRestockAndAdjust:
    async def test_restock_creates_row(self, session, seed):
        product = await seed.product()
        ledger = StockLedgerService(session)

        result = await ledger.restock(product.id, "east", 7, reference="PO-1")

        assert (result.quantity, result.reserved) == (7, 0)
        movements = await ledger.get_movements(product.id, "east")
        assert len(movements) == 1
        assert movements[0].movement_type == MovementType.IN.value
        assert movements[0].reference == "PO-1"

    async def test_locations_are_independent(self, session, seed):
        product = await seed.product()
        await seed.stock(product.id, 1, location="east")
        await seed.stock(product.id, 5, location="west")
        ledger = StockLedgerService(session)

        with pytest.raises(InsufficientStock):
            await ledger.reserve(product.id, "east", 2)
        await ledger.reserve(product.id, "west", 2)

    async def test_negative_adjustment_cannot_cut_into_reserved(self, session, seed):
        product = await seed.product()
        await seed.stock(product.id, 5)
        ledger = StockLedgerService(session)
        await ledger.reserve(product.id, LOCATION, 3)

        with pytest.raises(InsufficientStock):
            await ledger.adjust(product.id, LOCATION, -3)

        result = await ledger.adjust(product.id, LOCATION, -2, reference="damaged")
        assert (result.quantity, result.reserved) == (3, 3)

    async def test_positive_adjustment_recorded_as_adjustment(self, session, seed):
        product = await seed.product()
        await seed.stock(product.id, 1)
        ledger = StockLedgerService(session)

        await ledger.adjust(product.id, LOCATION, 4, reference="recount")

        movements = await ledger.get_movements(product.id, LOCATION)
        assert movements[-1].movement_type == MovementType.ADJUSTMENT.value
        assert movements[-1].quantity == 4

    async def test_zero_adjustment_rejected(self, session, seed):
        product = await seed.product()

        with pytest.raises(InvalidQuantity):
            await StockLedgerService(session).adjust(product.id, LOCATION, 0)


class TestIntegrity:
    async def test_movement_fold_matches_balance(self, session, seed):
        product = await seed.product()
        await seed.stock(product.id, 10)
        ledger = StockLedgerService(session)

        a = await ledger.reserve(product.id, LOCATION, 3)
        b = await ledger.reserve(product.id, LOCATION, 2)
        c = await ledger.reserve(product.id, LOCATION, 1)
        await ledger.commit(a)
        await ledger.release(b)
        await ledger.adjust(product.id, LOCATION, -1)
        await ledger.restock(product.id, LOCATION, 4)

        verified = await ledger.verify_integrity(product.id, LOCATION)

        assert (verified.quantity, verified.reserved) == (10, 1)
        assert (await ledger.get_reservation(c.reservation_id)).is_active

    async def test_verify_detects_drift(self, session, seed):
        product = await seed.product()
        await seed.stock(product.id, 10)

        async with transaction(session):
            await session.execute(
                update(InventoryRecord)
                .where(InventoryRecord.product_id == product.id)
                .values(quantity=12)
            )

        with pytest.raises(LedgerIntegrityError):
            await StockLedgerService(session).verify_integrity(product.id, LOCATION)

"""
Stock Ledger Service.

Single writer of inventory levels, reservation handles and stock movements.

Flow:
1. reserve() - hold stock for a pending order
2. commit()  - consume the hold when the order ships
3. release() - give the hold back when the order is cancelled
4. restock() / adjust() - receipts and manual corrections

Every mutation is a conditional UPDATE whose WHERE clause carries the
invariant (e.g. quantity - reserved >= :qty). A zero row count means the
guard lost and the typed failure is raised; no in-process lock is held, so
the guarantees hold across any number of service instances on one store.
Each mutation appends exactly one StockMovement in the same unit of work.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.config import settings
from fulfillment.core.enum_utils import get_enum_value
from fulfillment.core.exceptions import (
    AlreadyReleased,
    InsufficientStock,
    InvalidQuantity,
    InvalidReservation,
    LedgerIntegrityError,
    RecordNotFound,
)
from fulfillment.core.time import utcnow
from fulfillment.database import transaction
from fulfillment.models.inventory import (
    InventoryRecord,
    MovementType,
    ReservationStatus,
    StockMovement,
    StockReservation,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReservationHandle:
    """Snapshot of a reservation returned to callers."""
    reservation_id: int
    product_id: int
    location: str
    quantity: int
    status: str
    reference: Optional[str] = None

    @classmethod
    def from_model(cls, reservation: StockReservation) -> "ReservationHandle":
        return cls(
            reservation_id=reservation.id,
            product_id=reservation.product_id,
            location=reservation.location,
            quantity=reservation.quantity,
            status=reservation.status,
            reference=reservation.reference,
        )

    @property
    def is_active(self) -> bool:
        return self.status == ReservationStatus.ACTIVE.value


@dataclass(frozen=True)
class LedgerBalance:
    """Stock level of one product at one location."""
    product_id: int
    location: str
    quantity: int
    reserved: int

    @property
    def available(self) -> int:
        return self.quantity - self.reserved


ReservationRef = Union[ReservationHandle, int]


def _reservation_id(reservation: ReservationRef) -> int:
    if isinstance(reservation, ReservationHandle):
        return reservation.reservation_id
    return int(reservation)


def fold_movements(movements: List[StockMovement]) -> tuple:
    """
    Replay a movement log into (quantity, reserved).

    IN and ADJUSTMENT move quantity, RESERVED and UNRESERVED move reserved,
    OUT moves both.
    """
    quantity = 0
    reserved = 0
    for movement in movements:
        if movement.movement_type in (MovementType.IN.value, MovementType.ADJUSTMENT.value):
            quantity += movement.quantity
        elif movement.movement_type in (MovementType.RESERVED.value, MovementType.UNRESERVED.value):
            reserved += movement.quantity
        elif movement.movement_type == MovementType.OUT.value:
            quantity += movement.quantity
            reserved += movement.quantity
    return quantity, reserved


class StockLedgerService:
    """Inventory ledger: reservations, commits, releases and restocks."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== INTERNAL HELPERS ====================

    def _location(self, location: Optional[str]) -> str:
        return location or settings.DEFAULT_LOCATION

    def _inventory_key(self, product_id: int, location: str):
        return and_(
            InventoryRecord.product_id == product_id,
            InventoryRecord.location == location,
        )

    async def _get_record(self, product_id: int, location: str) -> Optional[InventoryRecord]:
        result = await self.db.execute(
            select(InventoryRecord)
            .where(self._inventory_key(product_id, location))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _available(self, product_id: int, location: str) -> int:
        record = await self._get_record(product_id, location)
        return record.available if record else 0

    async def _get_reservation_row(self, reservation_id: int) -> Optional[StockReservation]:
        return await self.db.get(StockReservation, reservation_id, populate_existing=True)

    def _record_movement(
        self,
        movement_type: MovementType,
        product_id: int,
        location: str,
        quantity: int,
        reference: Optional[str] = None,
        reservation_id: Optional[int] = None,
    ) -> StockMovement:
        """Append a ledger row. quantity is signed."""
        movement = StockMovement(
            movement_type=get_enum_value(movement_type),
            product_id=product_id,
            location=location,
            quantity=quantity,
            reference=reference,
            reservation_id=reservation_id,
            created_at=utcnow(),
        )
        self.db.add(movement)
        return movement

    async def _resolve_reservation(
        self,
        reservation_id: int,
        target: ReservationStatus,
    ) -> StockReservation:
        """Flip an ACTIVE reservation to target, or raise the matching failure."""
        result = await self.db.execute(
            update(StockReservation)
            .where(
                and_(
                    StockReservation.id == reservation_id,
                    StockReservation.status == ReservationStatus.ACTIVE.value,
                )
            )
            .values(status=target.value, resolved_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        reservation = await self._get_reservation_row(reservation_id)

        if result.rowcount == 0:
            status = reservation.status if reservation else None
            if target == ReservationStatus.RELEASED and status == ReservationStatus.RELEASED.value:
                logger.warning(f"Reservation {reservation_id} released twice")
                raise AlreadyReleased(reservation_id)
            logger.warning(
                f"Reservation {reservation_id} cannot move to {target.value} (status: {status})"
            )
            raise InvalidReservation(reservation_id, status)

        return reservation

    # ==================== MUTATIONS ====================

    async def reserve(
        self,
        product_id: int,
        location: Optional[str],
        quantity: int,
        reference: Optional[str] = None,
    ) -> ReservationHandle:
        """
        Hold quantity units for a pending order.

        Raises InsufficientStock when available-to-sell is below quantity;
        a missing inventory row counts as zero available.
        """
        if quantity <= 0:
            raise InvalidQuantity(quantity)
        location = self._location(location)

        async with transaction(self.db):
            result = await self.db.execute(
                update(InventoryRecord)
                .where(
                    and_(
                        self._inventory_key(product_id, location),
                        InventoryRecord.quantity - InventoryRecord.reserved >= quantity,
                    )
                )
                .values(reserved=InventoryRecord.reserved + quantity, last_updated=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                available = await self._available(product_id, location)
                logger.info(
                    f"Reserve refused for product {product_id} at {location}: "
                    f"requested {quantity}, available {available}"
                )
                raise InsufficientStock(product_id, location, quantity, available)

            reservation = StockReservation(
                product_id=product_id,
                location=location,
                quantity=quantity,
                status=ReservationStatus.ACTIVE.value,
                reference=reference,
                created_at=utcnow(),
            )
            self.db.add(reservation)
            await self.db.flush()

            self._record_movement(
                MovementType.RESERVED, product_id, location, quantity,
                reference=reference, reservation_id=reservation.id,
            )
            await self.db.flush()

        logger.debug(f"Reserved {quantity} of product {product_id} at {location} ({reservation.id})")
        return ReservationHandle.from_model(reservation)

    async def release(self, reservation: ReservationRef) -> ReservationHandle:
        """Give an ACTIVE hold back to available stock."""
        reservation_id = _reservation_id(reservation)

        async with transaction(self.db):
            row = await self._resolve_reservation(reservation_id, ReservationStatus.RELEASED)

            result = await self.db.execute(
                update(InventoryRecord)
                .where(
                    and_(
                        self._inventory_key(row.product_id, row.location),
                        InventoryRecord.reserved >= row.quantity,
                    )
                )
                .values(reserved=InventoryRecord.reserved - row.quantity, last_updated=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                logger.error(
                    f"Inventory for product {row.product_id} at {row.location} does not cover "
                    f"active reservation {reservation_id}"
                )
                raise LedgerIntegrityError(
                    f"Reserved stock does not cover reservation {reservation_id}",
                    details={"reservation_id": reservation_id},
                )

            self._record_movement(
                MovementType.UNRESERVED, row.product_id, row.location, -row.quantity,
                reference=row.reference, reservation_id=row.id,
            )
            await self.db.flush()

        return ReservationHandle.from_model(row)

    async def commit(self, reservation: ReservationRef) -> ReservationHandle:
        """Consume an ACTIVE hold: stock leaves the location."""
        reservation_id = _reservation_id(reservation)

        async with transaction(self.db):
            row = await self._resolve_reservation(reservation_id, ReservationStatus.COMMITTED)

            result = await self.db.execute(
                update(InventoryRecord)
                .where(
                    and_(
                        self._inventory_key(row.product_id, row.location),
                        InventoryRecord.reserved >= row.quantity,
                        InventoryRecord.quantity >= row.quantity,
                    )
                )
                .values(
                    quantity=InventoryRecord.quantity - row.quantity,
                    reserved=InventoryRecord.reserved - row.quantity,
                    last_updated=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                logger.error(
                    f"Inventory for product {row.product_id} at {row.location} cannot absorb "
                    f"commit of reservation {reservation_id}"
                )
                raise LedgerIntegrityError(
                    f"Stock does not cover reservation {reservation_id}",
                    details={"reservation_id": reservation_id},
                )

            self._record_movement(
                MovementType.OUT, row.product_id, row.location, -row.quantity,
                reference=row.reference, reservation_id=row.id,
            )
            await self.db.flush()

        return ReservationHandle.from_model(row)

    async def restock(
        self,
        product_id: int,
        location: Optional[str],
        quantity: int,
        reference: Optional[str] = None,
        movement_type: MovementType = MovementType.IN,
    ) -> LedgerBalance:
        """
        Add on-hand stock, creating the inventory row if it does not exist.

        movement_type is IN for receipts or ADJUSTMENT for manual positive
        corrections.
        """
        if quantity <= 0:
            raise InvalidQuantity(quantity)
        if movement_type not in (MovementType.IN, MovementType.ADJUSTMENT):
            raise ValueError(f"restock cannot record a {movement_type.value} movement")
        location = self._location(location)

        async with transaction(self.db):
            updated = await self._increase_quantity(product_id, location, quantity)
            if not updated:
                try:
                    async with self.db.begin_nested():
                        self.db.add(InventoryRecord(
                            product_id=product_id,
                            location=location,
                            quantity=quantity,
                            reserved=0,
                            last_updated=utcnow(),
                        ))
                        await self.db.flush()
                except IntegrityError:
                    # Row created concurrently; add to it instead
                    if not await self._increase_quantity(product_id, location, quantity):
                        raise
                else:
                    logger.info(f"Created inventory record for product {product_id} at {location}")

            self._record_movement(movement_type, product_id, location, quantity, reference=reference)
            await self.db.flush()
            record = await self._get_record(product_id, location)

        return LedgerBalance(product_id, location, record.quantity, record.reserved)

    async def _increase_quantity(self, product_id: int, location: str, quantity: int) -> bool:
        result = await self.db.execute(
            update(InventoryRecord)
            .where(self._inventory_key(product_id, location))
            .values(quantity=InventoryRecord.quantity + quantity, last_updated=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def adjust(
        self,
        product_id: int,
        location: Optional[str],
        delta: int,
        reference: Optional[str] = None,
    ) -> LedgerBalance:
        """
        Apply a signed manual correction to on-hand stock.

        A negative delta may not push quantity below what is reserved.
        """
        if delta == 0:
            raise InvalidQuantity(delta)
        if delta > 0:
            return await self.restock(
                product_id, location, delta, reference=reference,
                movement_type=MovementType.ADJUSTMENT,
            )
        location = self._location(location)

        async with transaction(self.db):
            result = await self.db.execute(
                update(InventoryRecord)
                .where(
                    and_(
                        self._inventory_key(product_id, location),
                        InventoryRecord.quantity + delta >= InventoryRecord.reserved,
                    )
                )
                .values(quantity=InventoryRecord.quantity + delta, last_updated=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                available = await self._available(product_id, location)
                logger.info(
                    f"Adjustment of {delta} refused for product {product_id} at {location}: "
                    f"available {available}"
                )
                raise InsufficientStock(product_id, location, -delta, available)

            self._record_movement(MovementType.ADJUSTMENT, product_id, location, delta, reference=reference)
            await self.db.flush()
            record = await self._get_record(product_id, location)

        return LedgerBalance(product_id, location, record.quantity, record.reserved)

    # ==================== READS ====================

    async def get_balance(self, product_id: int, location: Optional[str] = None) -> LedgerBalance:
        location = self._location(location)
        async with transaction(self.db):
            record = await self._get_record(product_id, location)
        if record is None:
            return LedgerBalance(product_id, location, 0, 0)
        return LedgerBalance(product_id, location, record.quantity, record.reserved)

    async def get_movements(self, product_id: int, location: Optional[str] = None) -> List[StockMovement]:
        location = self._location(location)
        async with transaction(self.db):
            result = await self.db.execute(
                select(StockMovement)
                .where(
                    and_(
                        StockMovement.product_id == product_id,
                        StockMovement.location == location,
                    )
                )
                .order_by(StockMovement.id)
            )
            return list(result.scalars().all())

    async def get_reservation(self, reservation_id: int) -> ReservationHandle:
        async with transaction(self.db):
            row = await self._get_reservation_row(reservation_id)
        if row is None:
            raise RecordNotFound("Reservation", reservation_id)
        return ReservationHandle.from_model(row)

    async def verify_integrity(self, product_id: int, location: Optional[str] = None) -> LedgerBalance:
        """
        Replay the movement log and compare it with the stored balance.

        Raises LedgerIntegrityError when they disagree.
        """
        balance = await self.get_balance(product_id, location)
        movements = await self.get_movements(product_id, balance.location)
        quantity, reserved = fold_movements(movements)

        if (quantity, reserved) != (balance.quantity, balance.reserved):
            logger.error(
                f"Ledger mismatch for product {product_id} at {balance.location}: "
                f"stored {balance.quantity}/{balance.reserved}, replayed {quantity}/{reserved}"
            )
            raise LedgerIntegrityError(
                f"Movement log disagrees with inventory for product {product_id}",
                details={
                    "product_id": product_id,
                    "location": balance.location,
                    "stored": [balance.quantity, balance.reserved],
                    "replayed": [quantity, reserved],
                },
            )
        return balance

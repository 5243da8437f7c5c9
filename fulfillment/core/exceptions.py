"""
Failure kinds raised by the fulfillment core.

Four families, each handled differently by callers:

- CapacityError: expected and recoverable (out of stock, coupon used up).
  Surface to the customer; never log as a system fault.
- InvalidRequestError: the caller sent something wrong (unknown coupon,
  wrong currency, amount mismatch).
- StateError: a sequencing bug or a race the orchestration should have
  prevented (illegal status change, double release). Worth alerting on.
- IntegrityViolation: the store disagrees with itself. The enclosing unit
  of work is always rolled back.
"""

from decimal import Decimal
from typing import Any, Dict, Optional


class FulfillmentError(Exception):
    """Base exception for fulfillment failures."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


# ==================== CATEGORIES ====================

class CapacityError(FulfillmentError):
    """Finite resource exhausted."""


class InvalidRequestError(FulfillmentError):
    """Caller or input error."""


class StateError(FulfillmentError):
    """Operation not legal in the current state."""


class IntegrityViolation(FulfillmentError):
    """Persisted state is inconsistent; the unit of work was aborted."""


# ==================== CAPACITY ====================

class InsufficientStock(CapacityError):
    def __init__(self, product_id: int, location: str, requested: int, available: int):
        self.product_id = product_id
        self.location = location
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id} at {location}: "
            f"requested {requested}, available {available}",
            details={
                "product_id": product_id,
                "location": location,
                "requested": requested,
                "available": available,
            },
        )


class CouponExhausted(CapacityError):
    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Coupon {code} has reached its usage limit", details={"code": code})


# ==================== INVALID REQUEST ====================

class CouponNotFound(InvalidRequestError):
    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Coupon {code} does not exist", details={"code": code})


class CouponExpired(InvalidRequestError):
    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Coupon {code} is outside its validity window", details={"code": code})


class CouponInactive(InvalidRequestError):
    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Coupon {code} is not active", details={"code": code})


class CouponBelowMinimum(InvalidRequestError):
    def __init__(self, code: str, subtotal: Decimal, minimum: Decimal):
        self.code = code
        self.subtotal = subtotal
        self.minimum = minimum
        super().__init__(
            f"Coupon {code} requires a minimum order of {minimum}, subtotal is {subtotal}",
            details={"code": code, "subtotal": str(subtotal), "minimum": str(minimum)},
        )


class CurrencyMismatch(InvalidRequestError):
    def __init__(self, expected: str, received: str):
        self.expected = expected
        self.received = received
        super().__init__(
            f"Payment currency {received} does not match order currency {expected}",
            details={"expected": expected, "received": received},
        )


class AmountMismatch(InvalidRequestError):
    def __init__(self, expected: Decimal, received: Decimal):
        self.expected = expected
        self.received = received
        super().__init__(
            f"Payment amount {received} does not match order total {expected}",
            details={"expected": str(expected), "received": str(received)},
        )


class RecordNotFound(InvalidRequestError):
    def __init__(self, entity: str, identifier: Any):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier} not found", details={"entity": entity, "id": identifier})


class ProductUnavailable(InvalidRequestError):
    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product {product_id} is not active", details={"product_id": product_id})


class InvalidQuantity(InvalidRequestError):
    def __init__(self, quantity: int):
        self.quantity = quantity
        super().__init__(f"Quantity must be positive, got {quantity}", details={"quantity": quantity})


# ==================== STATE ====================

class InvalidTransition(StateError):
    def __init__(self, entity: str, current: str, target: str):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot change {entity} from '{current}' to '{target}'",
            details={"entity": entity, "current": current, "target": target},
        )


class InvalidReservation(StateError):
    def __init__(self, reservation_id: int, status: Optional[str]):
        self.reservation_id = reservation_id
        self.status = status
        super().__init__(
            f"Reservation {reservation_id} is not active (status: {status})",
            details={"reservation_id": reservation_id, "status": status},
        )


class AlreadyReleased(StateError):
    def __init__(self, reservation_id: int):
        self.reservation_id = reservation_id
        super().__init__(
            f"Reservation {reservation_id} was already released",
            details={"reservation_id": reservation_id},
        )


class DuplicatePayment(StateError):
    def __init__(self, order_id: int, payment_id: int):
        self.order_id = order_id
        self.payment_id = payment_id
        super().__init__(
            f"Order {order_id} already has a completed payment; payment {payment_id} rejected",
            details={"order_id": order_id, "payment_id": payment_id},
        )


class CategoryCycleError(StateError):
    def __init__(self, category_id: int, parent_id: int):
        self.category_id = category_id
        self.parent_id = parent_id
        super().__init__(
            f"Moving category {category_id} under {parent_id} would create a cycle",
            details={"category_id": category_id, "parent_id": parent_id},
        )


# ==================== INTEGRITY ====================

class LedgerIntegrityError(IntegrityViolation):
    pass

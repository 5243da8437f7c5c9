"""
Order State Machine

This module is the SINGLE SOURCE OF TRUTH for all order status transitions.
OrderService consults it before every guarded status UPDATE.

    PENDING -> PAID -> SHIPPED -> DELIVERED
       |        |
       v        v
   CANCELLED  REFUNDED
"""

from typing import Dict, List

from fulfillment.core.exceptions import InvalidTransition
from fulfillment.models.order import OrderStatus


# =============================================================================
# TRANSITION RULES
# =============================================================================

# Format: current_status -> [list of allowed next statuses]
ORDER_TRANSITIONS: Dict[str, List[str]] = {
    OrderStatus.PENDING.value: [
        OrderStatus.PAID.value,       # Payment completed
        OrderStatus.CANCELLED.value,  # Customer cancel or abandoned checkout
    ],
    OrderStatus.PAID.value: [
        OrderStatus.SHIPPED.value,    # Handed to carrier
        OrderStatus.REFUNDED.value,   # Refund before shipment
    ],
    OrderStatus.SHIPPED.value: [
        OrderStatus.DELIVERED.value,
    ],
    OrderStatus.DELIVERED.value: [],  # Terminal state
    OrderStatus.CANCELLED.value: [],  # Terminal state
    OrderStatus.REFUNDED.value: [],   # Terminal state
}

# Human-readable action names for each transition
TRANSITION_ACTIONS: Dict[tuple, str] = {
    (OrderStatus.PENDING.value, OrderStatus.PAID.value): "Payment Received",
    (OrderStatus.PENDING.value, OrderStatus.CANCELLED.value): "Cancel",
    (OrderStatus.PAID.value, OrderStatus.SHIPPED.value): "Ship",
    (OrderStatus.PAID.value, OrderStatus.REFUNDED.value): "Refund",
    (OrderStatus.SHIPPED.value, OrderStatus.DELIVERED.value): "Deliver",
}

# Timestamp column stamped when an order enters a status
STATUS_TIMESTAMPS: Dict[str, str] = {
    OrderStatus.PAID.value: "paid_at",
    OrderStatus.SHIPPED.value: "shipped_at",
    OrderStatus.DELIVERED.value: "delivered_at",
    OrderStatus.CANCELLED.value: "cancelled_at",
    OrderStatus.REFUNDED.value: "refunded_at",
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def can_transition(current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed."""
    return new_status in ORDER_TRANSITIONS.get(current_status, [])


def get_allowed_transitions(current_status: str) -> List[str]:
    """Get list of statuses that can be transitioned to from current status."""
    return ORDER_TRANSITIONS.get(current_status, [])


def get_transition_action(current_status: str, new_status: str) -> str:
    """Get human-readable action name for a transition."""
    return TRANSITION_ACTIONS.get((current_status, new_status), f"{current_status} -> {new_status}")


def validate_transition(current_status: str, new_status: str) -> None:
    """
    Validate a status transition. Raises InvalidTransition if not allowed.

    Unlike purchase orders, re-entering the current status is rejected: every
    order transition has a side effect that must run exactly once.
    """
    if not can_transition(current_status, new_status):
        raise InvalidTransition("order", current_status, new_status)


def is_terminal(status: str) -> bool:
    """Is this a terminal (final) state?"""
    return not ORDER_TRANSITIONS.get(status)

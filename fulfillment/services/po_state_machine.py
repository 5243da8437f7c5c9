"""
Purchase Order State Machine

This module is the SINGLE SOURCE OF TRUTH for all PO status transitions.
All status changes must go through this module.
"""

from typing import Dict, List

from fulfillment.core.exceptions import InvalidTransition
from fulfillment.models.purchase import PurchaseOrderStatus as POStatus


# =============================================================================
# TRANSITION RULES
# =============================================================================

# Format: current_status -> [list of allowed next statuses]
PO_TRANSITIONS: Dict[str, List[str]] = {
    POStatus.DRAFT.value: [
        POStatus.PLACED.value,      # Send to supplier
        POStatus.CANCELLED.value,   # Cancel draft
    ],
    POStatus.PLACED.value: [
        POStatus.RECEIVED.value,    # Goods arrived, stock restocked
        POStatus.CANCELLED.value,   # Cancel (with supplier agreement)
    ],
    POStatus.RECEIVED.value: [],    # Terminal state - no transitions
    POStatus.CANCELLED.value: [],   # Terminal state - no transitions
}

# Human-readable action names for each transition
TRANSITION_ACTIONS: Dict[tuple, str] = {
    (POStatus.DRAFT.value, POStatus.PLACED.value): "Place with Supplier",
    (POStatus.DRAFT.value, POStatus.CANCELLED.value): "Cancel",
    (POStatus.PLACED.value, POStatus.RECEIVED.value): "Receive Goods",
    (POStatus.PLACED.value, POStatus.CANCELLED.value): "Cancel",
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def can_transition(current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed."""
    allowed = PO_TRANSITIONS.get(current_status, [])
    return new_status in allowed


def get_allowed_transitions(current_status: str) -> List[str]:
    """Get list of statuses that can be transitioned to from current status."""
    return PO_TRANSITIONS.get(current_status, [])


def get_transition_action(current_status: str, new_status: str) -> str:
    """Get human-readable action name for a transition."""
    return TRANSITION_ACTIONS.get((current_status, new_status), f"{current_status} -> {new_status}")


def validate_transition(current_status: str, new_status: str) -> None:
    """Validate a status transition. Raises InvalidTransition if invalid."""
    if not can_transition(current_status, new_status):
        raise InvalidTransition("purchase order", current_status, new_status)


# =============================================================================
# STATUS CHECK HELPERS
# =============================================================================

def can_receive_goods(status: str) -> bool:
    """Can goods be received against this PO?"""
    return status == POStatus.PLACED.value


def is_terminal(status: str) -> bool:
    """Is this a terminal (final) state?"""
    return status in [POStatus.RECEIVED.value, POStatus.CANCELLED.value]

"""Tests for the order and purchase order transition tables."""

import pytest

from fulfillment.core.exceptions import InvalidTransition
from fulfillment.services import order_state_machine as orders
from fulfillment.services import po_state_machine as purchase_orders


class TestOrderStateMachine:
    @pytest.mark.parametrize(
        "current,target",
        [
            ("PENDING", "PAID"),
            ("PENDING", "CANCELLED"),
            ("PAID", "SHIPPED"),
            ("PAID", "REFUNDED"),
            ("SHIPPED", "DELIVERED"),
        ],
    )
    def test_allowed(self, current, target):
        orders.validate_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            ("PENDING", "SHIPPED"),
            ("PAID", "CANCELLED"),
            ("SHIPPED", "REFUNDED"),
            ("PAID", "PAID"),
            ("CANCELLED", "PENDING"),
        ],
    )
    def test_rejected(self, current, target):
        with pytest.raises(InvalidTransition) as exc_info:
            orders.validate_transition(current, target)
        assert (exc_info.value.current, exc_info.value.target) == (current, target)

    def test_terminal_states(self):
        assert orders.is_terminal("DELIVERED")
        assert orders.is_terminal("CANCELLED")
        assert orders.is_terminal("REFUNDED")
        assert not orders.is_terminal("PAID")
        assert orders.get_transition_action("PAID", "SHIPPED") == "Ship"


class TestPurchaseOrderStateMachine:
    def test_lifecycle(self):
        purchase_orders.validate_transition("DRAFT", "PLACED")
        purchase_orders.validate_transition("PLACED", "RECEIVED")
        assert purchase_orders.can_receive_goods("PLACED")
        assert purchase_orders.is_terminal("RECEIVED")

    def test_draft_cannot_be_received(self):
        with pytest.raises(InvalidTransition):
            purchase_orders.validate_transition("DRAFT", "RECEIVED")
        assert purchase_orders.get_allowed_transitions("DRAFT") == ["PLACED", "CANCELLED"]

"""Plain helpers shared by test modules."""

from fulfillment.schemas.order import OrderItemCreate, OrderPlace
from fulfillment.services.stock_ledger_service import LedgerBalance, StockLedgerService

LOCATION = "main_warehouse"


def order_request(customer_id: int, *lines, **kwargs) -> OrderPlace:
    """Build an OrderPlace from (product_id, quantity) pairs."""
    return OrderPlace(
        customer_id=customer_id,
        items=[OrderItemCreate(product_id=p, quantity=q) for p, q in lines],
        **kwargs,
    )


async def balance(session_factory, product_id: int, location: str = LOCATION) -> LedgerBalance:
    async with session_factory() as session:
        return await StockLedgerService(session).get_balance(product_id, location)

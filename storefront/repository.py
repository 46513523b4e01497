# storefront/repository.py
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Order, Product
from .state import OrderStatus, ensure_transition


class InsufficientStockError(Exception):
    def __init__(self, product_id: int, quantity: int):
        super().__init__(f"insufficient stock for product {product_id} (wanted {quantity})")
        self.product_id = product_id
        self.quantity = quantity


async def find_order_by_transaction_uuid(session: AsyncSession, transaction_uuid: str) -> Optional[Order]:
    # always reflect the row as stored, not a stale identity-map copy
    res = await session.execute(
        select(Order)
        .where(Order.transaction_uuid == transaction_uuid)
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def find_order_owner(session: AsyncSession, transaction_uuid: str) -> Optional[str]:
    res = await session.execute(select(Order.user_id).where(Order.transaction_uuid == transaction_uuid))
    return res.scalar_one_or_none()


async def get_order_status(session: AsyncSession, transaction_uuid: str) -> Optional[OrderStatus]:
    res = await session.execute(select(Order.status).where(Order.transaction_uuid == transaction_uuid))
    status = res.scalar_one_or_none()
    return OrderStatus(status) if status is not None else None


async def compare_and_swap_order_status(
    session: AsyncSession,
    transaction_uuid: str,
    expected: OrderStatus,
    target: OrderStatus,
    **values,
) -> bool:
    """Move the order from ``expected`` to ``target`` if nobody else has.

    A single conditional UPDATE; in PostgreSQL the row lock makes a concurrent
    claimer wait and then match zero rows. Returns True when this call won.
    Runs inside the caller's transaction; the caller commits or rolls back.
    """
    ensure_transition(expected, target)
    res = await session.execute(
        update(Order)
        .where(Order.transaction_uuid == transaction_uuid, Order.status == expected.value)
        .values(status=target.value, **values)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def decrement_stock(session: AsyncSession, product_id: int, quantity: int) -> None:
    # the stock check and the decrement are one statement
    res = await session.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise InsufficientStockError(product_id, quantity)


async def flag_order(session: AsyncSession, transaction_uuid: str, error: str) -> None:
    await session.execute(
        update(Order)
        .where(Order.transaction_uuid == transaction_uuid)
        .values(needs_attention=True, settlement_error=error)
        .execution_options(synchronize_session=False)
    )


async def list_flagged_orders(session: AsyncSession, limit: int = 100) -> List[Order]:
    res = await session.execute(
        select(Order)
        .where(Order.needs_attention.is_(True), Order.status == OrderStatus.PENDING.value)
        .order_by(Order.created_at)
        .limit(limit)
    )
    return list(res.scalars().all())

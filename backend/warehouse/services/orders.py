"""
Order Service Layer
Lookups and manual status changes (hold, resume, cancel).
"""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from warehouse.core.errors import OrderNotFound
from warehouse.db.models import Order, OrderItem
from warehouse.services.order_state import OrderEvent, apply_transition

logger = logging.getLogger(__name__)


async def get_order(session: AsyncSession, order_id: int, with_products: bool = False) -> Order:
    """Load an order with its items and shipments, or raise OrderNotFound."""
    item_load = selectinload(Order.items)
    if with_products:
        item_load = item_load.selectinload(OrderItem.product)
    q = (
        select(Order)
        .where(Order.id == order_id)
        .options(item_load, selectinload(Order.shipments))
        .execution_options(populate_existing=True)
    )
    order = (await session.execute(q)).scalar_one_or_none()
    if order is None:
        raise OrderNotFound(order_id)
    return order


async def _transition(session: AsyncSession, order_id: int, event: OrderEvent) -> Order:
    order = await get_order(session, order_id)
    try:
        await apply_transition(session, order, event)
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    return order


async def hold_order(session: AsyncSession, order_id: int) -> Order:
    order = await _transition(session, order_id, OrderEvent.HOLD)
    logger.info(f"[Orders] Order {order.order_number} put on hold")
    return order


async def resume_order(session: AsyncSession, order_id: int) -> Order:
    order = await _transition(session, order_id, OrderEvent.RESUME)
    logger.info(f"[Orders] Order {order.order_number} resumed")
    return order


async def cancel_order(session: AsyncSession, order_id: int) -> Order:
    order = await _transition(session, order_id, OrderEvent.CANCEL)
    logger.info(f"[Orders] Order {order.order_number} cancelled")
    return order

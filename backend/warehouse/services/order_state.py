"""
Order state machine.

Every order status change in the application goes through TRANSITIONS.
Writes are compare-and-set: the UPDATE only matches while the row still has
the status the caller observed, so a manual transition can never overwrite
a concurrent fulfillment (or vice versa).
"""
import enum
import logging
from typing import Iterable

from sqlalchemy import update, select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from warehouse.core.errors import InvalidTransition
from warehouse.db.enums import OrderStatus
from warehouse.db.models import Order

logger = logging.getLogger(__name__)


class OrderEvent(str, enum.Enum):
    FULFILL = "fulfill"
    HOLD = "hold"
    RESUME = "resume"
    CANCEL = "cancel"
    # Upstream reported a partial fulfillment
    START_PROCESSING = "start_processing"


TRANSITIONS: dict[OrderEvent, dict[OrderStatus, OrderStatus]] = {
    OrderEvent.FULFILL: {
        OrderStatus.PENDING: OrderStatus.SHIPPED,
        OrderStatus.PROCESSING: OrderStatus.SHIPPED,
    },
    OrderEvent.HOLD: {
        OrderStatus.PENDING: OrderStatus.ON_HOLD,
        OrderStatus.PROCESSING: OrderStatus.ON_HOLD,
    },
    OrderEvent.RESUME: {
        OrderStatus.ON_HOLD: OrderStatus.PENDING,
    },
    OrderEvent.CANCEL: {
        OrderStatus.PENDING: OrderStatus.CANCELLED,
        OrderStatus.PROCESSING: OrderStatus.CANCELLED,
        OrderStatus.ON_HOLD: OrderStatus.CANCELLED,
    },
    OrderEvent.START_PROCESSING: {
        OrderStatus.PENDING: OrderStatus.PROCESSING,
    },
}

TERMINAL = frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED})


def _as_status(value) -> OrderStatus:
    return value if isinstance(value, OrderStatus) else OrderStatus(value)


def sources(event: OrderEvent) -> frozenset[OrderStatus]:
    """Statuses from which ``event`` is legal."""
    return frozenset(TRANSITIONS[event])


def can_apply(current, event: OrderEvent) -> bool:
    return _as_status(current) in TRANSITIONS[event]


def next_status(current, event: OrderEvent, order_id: int | None = None) -> OrderStatus:
    current = _as_status(current)
    target = TRANSITIONS[event].get(current)
    if target is None:
        raise InvalidTransition(order_id, current.value, event.value)
    return target


def guarded_status_update(order_id: int, event: OrderEvent, from_statuses: Iterable[OrderStatus] | None = None):
    """
    Build the UPDATE that moves an order along ``event``.

    Matches only rows whose status is one of ``from_statuses`` (default: every
    legal source of the event). All sources of one event share a target.
    """
    allowed = frozenset(from_statuses) if from_statuses is not None else sources(event)
    targets = {TRANSITIONS[event][s] for s in allowed}
    if len(targets) != 1:
        raise ValueError(f"Sources {sorted(allowed)} do not share a target for {event.value}")
    return (
        update(Order)
        .where(Order.id == order_id, Order.status.in_(list(allowed)))
        .values(status=targets.pop(), updated_at=func.now())
        .execution_options(synchronize_session=False)
    )


async def apply_transition(session: AsyncSession, order: Order, event: OrderEvent) -> OrderStatus:
    """
    Compare-and-set ``order`` along ``event`` inside the caller's transaction.

    Raises InvalidTransition if the observed status does not allow the event,
    or if another writer changed the status since it was read.
    """
    observed = _as_status(order.status)
    target = next_status(observed, event, order.id)

    result = await session.execute(guarded_status_update(order.id, event, [observed]))
    if result.rowcount != 1:
        fresh = await session.scalar(select(Order.status).where(Order.id == order.id))
        logger.warning(
            f"[OrderState] Lost race on order {order.id}: expected {observed.value}, found {fresh}"
        )
        raise InvalidTransition(order.id, _as_status(fresh).value if fresh else observed.value, event.value)

    set_committed_value(order, "status", target)
    logger.info(f"[OrderState] Order {order.id}: {observed.value} -> {target.value} ({event.value})")
    return target

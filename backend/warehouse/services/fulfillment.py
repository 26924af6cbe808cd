"""
Order fulfillment.

fulfill_order runs in three phases:

1. Preconditions, read-only: the order is shippable and every line is backed
   by enough stock. Violations are reported before any carrier is called.
2. Label purchase from the carrier, outside any database transaction. It is
   never retried: a second attempt could bill twice.
3. One unit of work that claims the order (guarded status update), records
   the shipment with its label, decrements stock with guarded updates and
   appends SHIPPED ledger entries. Either all of it commits or none of it
   does. If it fails the label is already paid for, so the error carries it
   and it is logged at CRITICAL for manual reconciliation.

After the commit Shopify is told about the tracking number. That step can
fail without affecting the fulfillment.
"""
import logging
from dataclasses import dataclass, asdict
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from warehouse.core.config import settings
from warehouse.core.errors import (
    CarrierNotConfigured,
    FulfillmentPersistenceError,
    InsufficientStock,
    InvalidTransition,
    OrderAlreadyShipped,
    OrderCancelled,
    StockIssue,
    UpstreamNotifyError,
    ValidationFailed,
)
from warehouse.core.logging import fulfillment_logger
from warehouse.db.database import unit_of_work
from warehouse.db.enums import OrderStatus, TransactionType
from warehouse.db.models import InventoryTransaction, Order, Product, Shipment
from warehouse.integrations.carriers import CarrierRegistry
from warehouse.integrations.carriers.base import CarrierClient, LabelPurchase
from warehouse.integrations.carriers.sandbox import sandbox_label
from warehouse.integrations.shopify import ShopifyClient
from warehouse.services.order_state import OrderEvent, guarded_status_update
from warehouse.services.orders import get_order
from warehouse.services.packages import destination_for, estimate_package

logger = logging.getLogger(__name__)

LABEL_URL_TEMPLATE = "/api/shipping/label/{shipment_id}"


@dataclass
class FulfillmentResult:
    order_id: int
    order_number: str
    shipment_id: int
    carrier: str
    service: str
    tracking_number: str
    tracking_url: str
    label_url: str
    label_format: str
    cost: float
    currency: str
    sandbox: bool = False
    upstream_notified: bool = False
    upstream_error: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class _StatusClaimLost(Exception):
    pass


class _StockClaimLost(Exception):
    def __init__(self, sku: str, quantity: int):
        super().__init__(f"Stock for {sku} dropped below {quantity} before commit")


def _status_error(order_id: int, status: OrderStatus, orphaned_label: Optional[dict] = None):
    if status == OrderStatus.SHIPPED:
        return OrderAlreadyShipped(order_id, orphaned_label)
    if status == OrderStatus.CANCELLED:
        return OrderCancelled(order_id, orphaned_label)
    err = InvalidTransition(order_id, status.value, OrderEvent.FULFILL.value)
    if orphaned_label:
        err.details["orphaned_label"] = orphaned_label
    return err


def check_shippable(order: Order) -> None:
    """Raise the specific error for an order that cannot be fulfilled in its current status."""
    status = OrderStatus(order.status)
    if status not in (OrderStatus.PENDING, OrderStatus.PROCESSING):
        raise _status_error(order.id, status)


def check_stock(order: Order) -> None:
    """Collect every short or unlinked line into one InsufficientStock."""
    if not order.items:
        raise ValidationFailed(f"Order {order.order_number} has no items", {"order_id": order.id})

    required: dict[int, int] = {}
    for item in order.items:
        if item.product_id is not None:
            required[item.product_id] = required.get(item.product_id, 0) + item.quantity

    issues = []
    reported: set[int] = set()
    for item in order.items:
        product = item.product
        if product is None:
            issues.append(StockIssue(item.sku, item.name, item.quantity, None))
        elif product.id in reported:
            continue
        elif product.current_stock < required[product.id]:
            reported.add(product.id)
            issues.append(StockIssue(product.sku, item.name, required[product.id], product.current_stock))

    if issues:
        raise InsufficientStock(issues)


async def _purchase_label(
    client: CarrierClient,
    service_code: str,
    order: Order,
    label_format: str,
) -> LabelPurchase:
    if not client.is_configured():
        if settings.CARRIER_SANDBOX_LABELS:
            fulfillment_logger.warning(
                f"[Fulfillment] {client.name} not configured, issuing sandbox label",
                order_number=order.order_number,
            )
            return sandbox_label(client, service_code, order.order_number)
        raise CarrierNotConfigured(client.name)

    return await client.create_shipment(
        service_code,
        destination_for(order),
        [estimate_package(order.items)],
        label_format,
    )


async def _record_fulfillment(
    session: AsyncSession,
    order: Order,
    purchase: LabelPurchase,
    service: str,
    acting_user_id: int,
) -> Shipment:
    """All writes of a fulfillment. Must run inside unit_of_work."""
    # Claim the order first so concurrent fulfillers serialize here
    claimed = await session.execute(guarded_status_update(order.id, OrderEvent.FULFILL))
    if claimed.rowcount != 1:
        raise _StatusClaimLost()

    shipment = Shipment(
        order_id=order.id,
        carrier=purchase.carrier,
        service=service,
        tracking_number=purchase.tracking_number,
        label_data=purchase.label_data,
        label_format=purchase.label_format,
        shipment_cost=purchase.cost,
        currency=purchase.currency,
        shipped_by_user_id=acting_user_id,
    )
    session.add(shipment)
    await session.flush()
    shipment.label_url = LABEL_URL_TEMPLATE.format(shipment_id=shipment.id)

    note = f"Shipped for order {order.order_number} via {purchase.carrier}"
    for item in order.items:
        decrement = (
            update(Product)
            .where(Product.id == item.product_id, Product.current_stock >= item.quantity)
            .values(current_stock=Product.current_stock - item.quantity, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(decrement)
        if result.rowcount != 1:
            raise _StockClaimLost(item.sku, item.quantity)
        session.add(InventoryTransaction(
            product_id=item.product_id,
            quantity=-item.quantity,
            type=TransactionType.SHIPPED,
            user_id=acting_user_id,
            notes=note,
        ))

    await session.flush()
    return shipment


async def notify_upstream(
    shopify: Optional[ShopifyClient],
    order: Order,
    purchase: LabelPurchase,
    tracking_url: str,
) -> tuple[bool, Optional[str]]:
    """
    Tell Shopify the order shipped. Returns (notified, error message).
    Never raises: the fulfillment is already committed.
    """
    if purchase.sandbox:
        logger.info(f"[Fulfillment] Sandbox label for {order.order_number}, Shopify not notified")
        return False, None
    if shopify is None or not shopify.is_configured():
        logger.info(f"[Fulfillment] Shopify not configured, skipping notification for {order.order_number}")
        return False, None

    try:
        await shopify.notify_fulfilled(
            order.shopify_order_id,
            purchase.tracking_number,
            purchase.carrier,
            tracking_url,
        )
    except UpstreamNotifyError as e:
        fulfillment_logger.warning(
            f"[Fulfillment] Shopify notification failed for {order.order_number}",
            error=e.message,
        )
        return False, e.message
    except Exception as e:
        fulfillment_logger.error(
            f"[Fulfillment] Unexpected Shopify notification failure for {order.order_number}",
            error=e,
        )
        return False, f"Unexpected error: {e!r}"
    return True, None


async def _warn_low_stock(session: AsyncSession, product_ids: set[int]) -> None:
    if not product_ids:
        return
    q = select(Product.sku, Product.current_stock, Product.low_stock_threshold).where(
        Product.id.in_(product_ids),
        Product.current_stock <= Product.low_stock_threshold,
    )
    for sku, stock, threshold in (await session.execute(q)).all():
        logger.warning(f"[Inventory] Low stock: {sku} at {stock} (threshold {threshold})")


async def fulfill_order(
    session: AsyncSession,
    order_id: int,
    carrier: str,
    service_code: str,
    acting_user_id: int,
    registry: CarrierRegistry,
    service_name: Optional[str] = None,
    label_format: str = "PNG",
    shopify: Optional[ShopifyClient] = None,
) -> FulfillmentResult:
    """
    Buy a label for the order and record the shipment.

    Raises:
        OrderNotFound, OrderAlreadyShipped, OrderCancelled, InvalidTransition,
        InsufficientStock, ValidationFailed: before any carrier call
        CarrierNotConfigured, CarrierError: label purchase failed, nothing written
        FulfillmentPersistenceError, OrderAlreadyShipped, OrderCancelled:
            label bought but not recorded (orphaned_label set)
    """
    order = await get_order(session, order_id, with_products=True)
    check_shippable(order)
    check_stock(order)
    client = registry.get(carrier)
    # Rollback expires instances; error paths below only use these
    order_pk, order_number = order.id, order.order_number

    # No transaction stays open across the carrier call
    await session.commit()

    purchase = await _purchase_label(client, service_code, order, label_format)
    service = service_name or purchase.service_name
    orphan = purchase.summary()
    fulfillment_logger.info(
        f"[Fulfillment] Label purchased for {order.order_number}",
        carrier=purchase.carrier,
        tracking_number=purchase.tracking_number,
        cost=purchase.cost,
    )

    try:
        async with unit_of_work(session):
            shipment = await _record_fulfillment(session, order, purchase, service, acting_user_id)
    except _StatusClaimLost:
        current = await session.scalar(select(Order.status).where(Order.id == order_pk))
        fulfillment_logger.critical(
            f"[Fulfillment] Order {order_number} changed status during label purchase; "
            f"label {purchase.tracking_number} is orphaned",
            status=str(current),
            orphaned_label=orphan,
        )
        raise _status_error(order_pk, OrderStatus(current) if current else OrderStatus.SHIPPED, orphan)
    except Exception as e:
        fulfillment_logger.critical(
            f"[Fulfillment] Could not record fulfillment of {order_number}; "
            f"label {purchase.tracking_number} is orphaned",
            error=e,
            orphaned_label=orphan,
        )
        raise FulfillmentPersistenceError(order_pk, orphan, str(e)) from e

    set_committed_value(order, "status", OrderStatus.SHIPPED)
    fulfillment_logger.info(
        f"[Fulfillment] Order {order.order_number} shipped",
        shipment_id=shipment.id,
        tracking_number=purchase.tracking_number,
    )
    await _warn_low_stock(session, {i.product_id for i in order.items if i.product_id is not None})

    tracking_url = client.tracking_url(purchase.tracking_number)
    notified, upstream_error = await notify_upstream(shopify, order, purchase, tracking_url)

    return FulfillmentResult(
        order_id=order.id,
        order_number=order.order_number,
        shipment_id=shipment.id,
        carrier=purchase.carrier,
        service=service,
        tracking_number=purchase.tracking_number,
        tracking_url=tracking_url,
        label_url=shipment.label_url,
        label_format=purchase.label_format,
        cost=purchase.cost,
        currency=purchase.currency,
        sandbox=purchase.sandbox,
        upstream_notified=notified,
        upstream_error=upstream_error,
    )

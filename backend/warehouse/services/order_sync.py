"""
Order Sync Service
Upserts Shopify orders delivered by webhook or fetched by polling. Keyed by
shopify_order_id and shopify_line_item_id so replays update in place.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
import logging

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from warehouse.core.errors import ValidationFailed
from warehouse.db.enums import OrderStatus
from warehouse.db.models import Order, OrderItem, Product
from warehouse.integrations.shopify import ShopifyClient
from warehouse.services.order_state import OrderEvent, apply_transition, can_apply

logger = logging.getLogger(__name__)

ORDER_TOPICS = ("orders/create", "orders/updated", "orders/cancelled")

# Upstream statuses an existing local order may follow
SYNC_EVENTS = {
    OrderStatus.PROCESSING: OrderEvent.START_PROCESSING,
    OrderStatus.CANCELLED: OrderEvent.CANCEL,
}


@dataclass
class SyncResult:
    order: Order
    created: bool
    status_changed: bool = False


def map_upstream_status(fulfillment_status: Optional[str], cancelled: bool) -> OrderStatus:
    if cancelled:
        return OrderStatus.CANCELLED
    if fulfillment_status in ("partial", "partially_fulfilled"):
        return OrderStatus.PROCESSING
    if fulfillment_status == "fulfilled":
        return OrderStatus.SHIPPED
    return OrderStatus.PENDING


def _decimal(value: Any, field: str) -> Decimal:
    try:
        return Decimal(str(value if value is not None else "0"))
    except InvalidOperation:
        raise ValidationFailed(f"Invalid {field}: {value!r}")


def _timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _customer_name(payload: dict) -> str:
    for source in (payload.get("customer"), payload.get("shipping_address")):
        if source:
            name = f"{source.get('first_name') or ''} {source.get('last_name') or ''}".strip()
            if name:
                return name
    return "Unknown"


def order_fields(payload: dict) -> dict[str, Any]:
    """Local Order columns for a Shopify order payload, status excluded."""
    if payload.get("id") is None or not payload.get("name"):
        raise ValidationFailed("Order payload missing id or name")
    address = payload.get("shipping_address") or {}
    customer = payload.get("customer") or {}
    return {
        "shopify_order_id": str(payload["id"]),
        "order_number": payload["name"],
        "customer_name": _customer_name(payload),
        "customer_email": payload.get("email") or customer.get("email") or None,
        "shipping_address1": address.get("address1") or "",
        "shipping_address2": address.get("address2") or None,
        "shipping_city": address.get("city") or "",
        "shipping_state": address.get("province_code") or address.get("province") or "",
        "shipping_zip": address.get("zip") or "",
        "shipping_country": address.get("country_code") or address.get("country") or "US",
        "total_price": _decimal(payload.get("total_price"), "total_price"),
        "currency": payload.get("currency") or "USD",
        "shopify_created_at": _timestamp(payload.get("created_at")),
    }


def upstream_status(payload: dict) -> OrderStatus:
    cancelled = bool(payload.get("cancelled_at")) or payload.get("financial_status") == "voided"
    return map_upstream_status(payload.get("fulfillment_status"), cancelled)


async def _products_by_sku(session: AsyncSession, line_items: list[dict]) -> dict[str, int]:
    skus = {li["sku"].strip().lower() for li in line_items if li.get("sku")}
    if not skus:
        return {}
    q = select(Product.id, Product.sku).where(func.lower(Product.sku).in_(skus))
    return {sku.lower(): pid for pid, sku in (await session.execute(q)).all()}


async def _sync_items(session: AsyncSession, order: Order, line_items: list[dict]) -> None:
    sku_map = await _products_by_sku(session, line_items)
    existing = {item.shopify_line_item_id: item for item in order.items}

    for li in line_items:
        if li.get("id") is None:
            raise ValidationFailed("Line item missing id")
        line_id = str(li["id"])
        sku = (li.get("sku") or "").strip()
        values = {
            "sku": sku,
            "name": li.get("title") or li.get("name") or sku or "Item",
            "quantity": int(li.get("quantity") or 0),
            "price": _decimal(li.get("price"), "price"),
            "product_id": sku_map.get(sku.lower()) if sku else None,
        }
        item = existing.get(line_id)
        if item is None:
            order.items.append(OrderItem(shopify_line_item_id=line_id, **values))
        else:
            for key, value in values.items():
                setattr(item, key, value)


async def _find_order(session: AsyncSession, shopify_order_id: str) -> Optional[Order]:
    q = (
        select(Order)
        .where(Order.shopify_order_id == shopify_order_id)
        .options(selectinload(Order.items))
        .execution_options(populate_existing=True)
    )
    return (await session.execute(q)).scalar_one_or_none()


async def _update_existing(session: AsyncSession, order: Order, payload: dict) -> bool:
    """Refresh an existing order. Returns whether its status changed."""
    current = OrderStatus(order.status)
    for key, value in order_fields(payload).items():
        setattr(order, key, value)
    if current != OrderStatus.SHIPPED:
        await _sync_items(session, order, payload.get("line_items") or [])

    target = upstream_status(payload)
    event = SYNC_EVENTS.get(target)
    if event is None or target == current:
        return False
    if not can_apply(current, event):
        logger.info(
            f"[OrderSync] Ignoring upstream {target.value} for {order.order_number} (local {current.value})"
        )
        return False
    await session.flush()
    await apply_transition(session, order, event)
    return True


async def upsert_order(session: AsyncSession, payload: dict) -> SyncResult:
    """
    Create or update the local copy of a Shopify order.

    New orders take the upstream status. Existing orders only follow upstream
    changes the state machine allows for sync (PENDING -> PROCESSING and
    cancellation); local SHIPPED, ON_HOLD and CANCELLED are never regressed.
    """
    fields = order_fields(payload)
    line_items = payload.get("line_items") or []

    order = await _find_order(session, fields["shopify_order_id"])
    if order is None:
        order = Order(status=upstream_status(payload), **fields)
        order.items = []
        session.add(order)
        try:
            await _sync_items(session, order, line_items)
            await session.commit()
            logger.info(f"[OrderSync] Created order {order.order_number} ({order.status.value})")
            return SyncResult(order=order, created=True)
        except IntegrityError:
            # A concurrent delivery of the same order won the insert
            await session.rollback()
            order = await _find_order(session, fields["shopify_order_id"])
            if order is None:
                raise

    try:
        changed = await _update_existing(session, order, payload)
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info(f"[OrderSync] Updated order {order.order_number} (status_changed={changed})")
    return SyncResult(order=order, created=False, status_changed=changed)


@dataclass
class OrderSyncReport:
    created: int = 0
    updated: int = 0
    status_changed: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "updated": self.updated,
            "status_changed": self.status_changed,
            "total": self.created + self.updated,
            "errors": self.errors,
        }


async def sync_orders(session: AsyncSession, payloads: list[dict]) -> OrderSyncReport:
    """Upsert a batch of orders one at a time; a bad payload is reported and skipped."""
    report = OrderSyncReport()
    for payload in payloads:
        label = payload.get("name") or payload.get("id")
        try:
            result = await upsert_order(session, payload)
        except ValidationFailed as e:
            await session.rollback()
            logger.warning(f"[OrderSync] Skipping order {label}: {e.message}")
            report.errors.append(f"Order {label}: {e.message}")
            continue
        if result.created:
            report.created += 1
        else:
            report.updated += 1
            report.status_changed += int(result.status_changed)
    return report


async def sync_open_orders(session: AsyncSession, shopify: ShopifyClient) -> OrderSyncReport:
    """Poll Shopify for open orders; the same rules as webhook delivery apply."""
    report = await sync_orders(session, await shopify.fetch_orders("open"))
    logger.info(
        f"[OrderSync] Poll: {report.created} created, {report.updated} updated, "
        f"{len(report.errors)} error(s)"
    )
    return report

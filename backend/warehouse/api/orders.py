"""
Orders API
Order detail and manual status changes.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from warehouse.api.deps import get_current_user
from warehouse.core.logging import orders_logger
from warehouse.db.database import get_db
from warehouse.db.models import Order, User
from warehouse.services import orders as order_service

router = APIRouter()


def _iso(value):
    return value.isoformat() if value else None


def transform_order_to_response(order: Order) -> dict:
    return {
        "id": order.id,
        "shopify_order_id": order.shopify_order_id,
        "order_number": order.order_number,
        "status": order.status.value if hasattr(order.status, "value") else order.status,
        "customer_name": order.customer_name,
        "customer_email": order.customer_email,
        "shipping_address": {
            "address1": order.shipping_address1,
            "address2": order.shipping_address2,
            "city": order.shipping_city,
            "state": order.shipping_state,
            "zip": order.shipping_zip,
            "country": order.shipping_country,
        },
        "total_price": str(order.total_price),
        "currency": order.currency,
        "shopify_created_at": _iso(order.shopify_created_at),
        "items": [
            {
                "id": item.id,
                "shopify_line_item_id": item.shopify_line_item_id,
                "sku": item.sku,
                "name": item.name,
                "quantity": item.quantity,
                "price": str(item.price),
                "product_id": item.product_id,
            }
            for item in order.items
        ],
        "shipments": [
            {
                "id": s.id,
                "carrier": s.carrier,
                "service": s.service,
                "tracking_number": s.tracking_number,
                "label_url": s.label_url,
                "label_format": s.label_format,
                "shipment_cost": float(s.shipment_cost) if s.shipment_cost is not None else None,
                "currency": s.currency,
                "shipped_at": _iso(s.shipped_at),
            }
            for s in order.shipments
        ],
    }


@router.get("/{order_id}")
async def get_order(
    order_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    order = await order_service.get_order(db, order_id)
    return transform_order_to_response(order)


async def _after_transition(db: AsyncSession, order_id: int, action: str, user: User) -> dict:
    orders_logger.info(f"Order {action}", order_id=order_id, user_id=user.id)
    order = await order_service.get_order(db, order_id)
    return transform_order_to_response(order)


@router.post("/{order_id}/hold")
async def hold_order(
    order_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await order_service.hold_order(db, order_id)
    return await _after_transition(db, order_id, "held", current_user)


@router.post("/{order_id}/resume")
async def resume_order(
    order_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await order_service.resume_order(db, order_id)
    return await _after_transition(db, order_id, "resumed", current_user)


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await order_service.cancel_order(db, order_id)
    return await _after_transition(db, order_id, "cancelled", current_user)

"""
Webhooks API
Inbound Shopify order webhooks. Authenticated by HMAC signature, not JWT.
"""
import json

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from warehouse.core.config import settings
from warehouse.core.errors import Unauthorized, ValidationFailed
from warehouse.core.logging import shopify_logger
from warehouse.db.database import get_db
from warehouse.integrations.shopify import verify_webhook_signature
from warehouse.services.order_sync import ORDER_TOPICS, upsert_order

router = APIRouter()


@router.post("/shopify/orders")
async def shopify_order_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    raw_body = await request.body()
    signature = request.headers.get("x-shopify-hmac-sha256")
    if not verify_webhook_signature(raw_body, signature, settings.SHOPIFY_WEBHOOK_SECRET):
        raise Unauthorized("Invalid webhook signature")

    topic = request.headers.get("x-shopify-topic", "")
    if topic not in ORDER_TOPICS:
        shopify_logger.info("Ignoring webhook topic", topic=topic)
        return {"status": "ignored", "topic": topic}

    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise ValidationFailed("Webhook body is not valid JSON")
    if not isinstance(payload, dict):
        raise ValidationFailed("Webhook body must be a JSON object")

    result = await upsert_order(db, payload)
    shopify_logger.info(
        "Order synced",
        topic=topic,
        order_id=result.order.id,
        created=result.created,
        status_changed=result.status_changed,
    )
    return {
        "status": "ok",
        "order_id": result.order.id,
        "created": result.created,
        "status_changed": result.status_changed,
        "order_status": result.order.status.value,
    }

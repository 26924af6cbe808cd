"""
Shopify API
Manual catalog and order pulls, and a connectivity check.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from warehouse.api.deps import get_current_user, get_shopify_client, require_admin
from warehouse.core.logging import shopify_logger
from warehouse.db.database import get_db
from warehouse.db.models import User
from warehouse.integrations.shopify import ShopifyClient
from warehouse.services.order_sync import sync_open_orders
from warehouse.services.product_sync import sync_catalog

router = APIRouter()


@router.post("/sync-products")
async def sync_products(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    shopify: ShopifyClient = Depends(get_shopify_client),
):
    result = await sync_catalog(db, shopify)
    shopify_logger.info("Product sync finished", user_id=current_user.id, **result.to_dict())
    return result.to_dict()


@router.post("/sync-orders")
async def sync_orders(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    shopify: ShopifyClient = Depends(get_shopify_client),
):
    report = await sync_open_orders(db, shopify)
    shopify_logger.info("Order sync finished", user_id=current_user.id, **report.to_dict())
    return report.to_dict()


@router.get("/status")
async def shopify_status(
    current_user: User = Depends(get_current_user),
    shopify: ShopifyClient = Depends(get_shopify_client),
):
    return await shopify.test_connection()

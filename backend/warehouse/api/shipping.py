"""
Shipping API
Rate quotes, label purchase (order fulfillment) and label retrieval.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from warehouse.api.deps import get_carrier_registry, get_current_user, get_shopify_client
from warehouse.core.logging import api_logger
from warehouse.db.database import get_db
from warehouse.db.models import User
from warehouse.integrations.carriers import CarrierRegistry
from warehouse.integrations.shopify import ShopifyClient
from warehouse.services.fulfillment import fulfill_order
from warehouse.services.labels import get_label
from warehouse.services.rates import get_rates

router = APIRouter()


class RateRequest(BaseModel):
    order_id: int


class PurchaseRequest(BaseModel):
    order_id: int
    carrier: str = Field(min_length=1)
    service_code: str = Field(min_length=1)
    service_name: Optional[str] = None
    label_format: str = "PNG"


@router.post("/rates")
async def quote_rates(
    payload: RateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    carriers: CarrierRegistry = Depends(get_carrier_registry),
):
    quote = await get_rates(db, payload.order_id, carriers)
    return quote.to_dict()


@router.post("/purchase")
async def purchase_label(
    payload: PurchaseRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    carriers: CarrierRegistry = Depends(get_carrier_registry),
    shopify: ShopifyClient = Depends(get_shopify_client),
):
    api_logger.info(
        "Purchasing label",
        order_id=payload.order_id,
        carrier=payload.carrier,
        service_code=payload.service_code,
        user_id=current_user.id,
    )
    result = await fulfill_order(
        db,
        payload.order_id,
        payload.carrier,
        payload.service_code,
        current_user.id,
        carriers,
        service_name=payload.service_name,
        label_format=payload.label_format.upper(),
        shopify=shopify,
    )
    return result.to_dict()


@router.get("/label/{shipment_id}")
async def download_label(
    shipment_id: int,
    download: bool = Query(False),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    label = await get_label(db, shipment_id)
    return Response(
        content=label.data,
        media_type=label.content_type,
        headers=label.headers(download=download),
    )


@router.head("/label/{shipment_id}")
async def label_exists(
    shipment_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    label = await get_label(db, shipment_id)
    headers = label.headers()
    headers["Content-Type"] = label.content_type
    return Response(status_code=200, headers=headers)

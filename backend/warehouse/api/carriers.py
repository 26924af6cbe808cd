"""
Carriers API
Credential and connectivity check for each configured carrier.
"""
import asyncio

from fastapi import APIRouter, Depends

from warehouse.api.deps import get_carrier_registry, get_current_user
from warehouse.core.config import settings
from warehouse.db.models import User
from warehouse.integrations.carriers import CarrierRegistry

router = APIRouter()


@router.get("/status")
async def carrier_status(
    current_user: User = Depends(get_current_user),
    carriers: CarrierRegistry = Depends(get_carrier_registry),
):
    results = await asyncio.gather(*(client.test_connection() for client in carriers))
    return {
        "carriers": list(results),
        "sandbox_labels": settings.CARRIER_SANDBOX_LABELS,
        "ship_from_complete": settings.warehouse_address_complete,
    }

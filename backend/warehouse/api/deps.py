from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from warehouse.db.database import get_db
from warehouse.db.enums import UserRole
from warehouse.db.models import User
from warehouse.core.security import get_current_user as jwt_get_current_user
from warehouse.integrations.carriers import CarrierRegistry
from warehouse.integrations.shopify import ShopifyClient


async def get_current_user(
    current_user_data: dict = Depends(jwt_get_current_user),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the JWT subject into the acting User row."""
    user_id = current_user_data.get("user_id")
    if not user_id:
        raise HTTPException(status_code=401, detail="Could not validate credentials")

    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Could not validate credentials")
    return user


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != UserRole.ADMIN:
        raise HTTPException(status_code=403, detail={"error": "permission_denied", "message": "Admin access required"})
    return current_user


def get_carrier_registry(request: Request) -> CarrierRegistry:
    return request.app.state.carriers


def get_shopify_client(request: Request) -> ShopifyClient:
    return request.app.state.shopify

"""
Inventory API
Products, stock movements and ledger reports.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from warehouse.api.deps import get_current_user
from warehouse.core.logging import inventory_logger
from warehouse.db.database import get_db
from warehouse.db.enums import TransactionType
from warehouse.db.models import InventoryTransaction, Product, User
from warehouse.services import inventory as inventory_service

router = APIRouter()


# === Schemas ===

class ProductCreate(BaseModel):
    sku: str = Field(min_length=1, max_length=100)
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    barcode: Optional[str] = None
    weight: Optional[float] = Field(default=None, ge=0)
    length: Optional[float] = Field(default=None, ge=0)
    width: Optional[float] = Field(default=None, ge=0)
    height: Optional[float] = Field(default=None, ge=0)
    initial_stock: int = 0
    low_stock_threshold: int = Field(default=10, ge=0)
    shopify_product_id: Optional[str] = None
    shopify_variant_id: Optional[str] = None


class StockMovement(BaseModel):
    quantity: int
    notes: Optional[str] = None


class StockAdjustment(BaseModel):
    new_stock: int
    notes: str


# === Serializers ===

def transform_product_to_response(product: Product) -> dict:
    return {
        "id": product.id,
        "sku": product.sku,
        "name": product.name,
        "description": product.description,
        "barcode": product.barcode,
        "weight": product.weight,
        "length": product.length,
        "width": product.width,
        "height": product.height,
        "current_stock": product.current_stock,
        "low_stock_threshold": product.low_stock_threshold,
        "is_low_stock": product.is_low_stock,
        "shopify_product_id": product.shopify_product_id,
        "shopify_variant_id": product.shopify_variant_id,
    }


def transform_transaction_to_response(entry: Optional[InventoryTransaction]) -> Optional[dict]:
    if entry is None:
        return None
    return {
        "id": entry.id,
        "product_id": entry.product_id,
        "quantity": entry.quantity,
        "type": entry.type.value if hasattr(entry.type, "value") else entry.type,
        "notes": entry.notes,
        "user_id": entry.user_id,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


def _movement_response(product: Product, entry: Optional[InventoryTransaction]) -> dict:
    return {
        "product": transform_product_to_response(product),
        "transaction": transform_transaction_to_response(entry),
    }


# === Routes ===

@router.post("/products", status_code=201)
async def create_product(
    payload: ProductCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    product = await inventory_service.create_product(
        db,
        sku=payload.sku,
        name=payload.name,
        created_by_id=current_user.id,
        initial_stock=payload.initial_stock,
        low_stock_threshold=payload.low_stock_threshold,
        description=payload.description,
        barcode=payload.barcode,
        weight=payload.weight,
        length=payload.length,
        width=payload.width,
        height=payload.height,
        shopify_product_id=payload.shopify_product_id,
        shopify_variant_id=payload.shopify_variant_id,
    )
    return transform_product_to_response(product)


@router.post("/products/{product_id}/receive")
async def receive_stock(
    product_id: int,
    payload: StockMovement,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    product, entry = await inventory_service.receive_stock(
        db, product_id, payload.quantity, current_user.id, payload.notes
    )
    return _movement_response(product, entry)


@router.post("/products/{product_id}/adjust")
async def adjust_stock(
    product_id: int,
    payload: StockAdjustment,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    product, entry = await inventory_service.adjust_stock(
        db, product_id, payload.new_stock, current_user.id, payload.notes
    )
    if entry is None:
        inventory_logger.info("Adjustment matched current stock", product_id=product_id)
    return _movement_response(product, entry)


@router.post("/products/{product_id}/return")
async def return_stock(
    product_id: int,
    payload: StockMovement,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    product, entry = await inventory_service.return_stock(
        db, product_id, payload.quantity, current_user.id, payload.notes
    )
    return _movement_response(product, entry)


@router.get("/transactions")
async def list_transactions(
    product_id: Optional[int] = Query(None),
    type: Optional[TransactionType] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    entries = await inventory_service.list_transactions(
        db, product_id=product_id, kind=type, limit=limit, offset=offset
    )
    return [transform_transaction_to_response(e) for e in entries]


@router.get("/reconcile")
async def reconcile(
    product_id: Optional[int] = Query(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if product_id is not None:
        results = [await inventory_service.reconcile_product(db, product_id)]
    else:
        results = await inventory_service.reconcile_all(db)
    return {
        "consistent": all(r.consistent for r in results),
        "products": [r.to_dict() for r in results],
    }


@router.get("/low-stock")
async def low_stock(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    products = await inventory_service.list_low_stock(db)
    return [transform_product_to_response(p) for p in products]


@router.get("/summary")
async def summary(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await inventory_service.inventory_summary(db)

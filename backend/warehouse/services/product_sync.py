"""
Product Sync Service
Mirrors the Shopify catalog into local products, one product per variant.
Catalog fields only; current_stock is owned by the ledger and never touched.
"""
from dataclasses import dataclass, field
from typing import Any, Optional
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from warehouse.db.models import Product
from warehouse.integrations.shopify import ShopifyClient

logger = logging.getLogger(__name__)

LB_PER_UNIT = {
    "kg": 2.20462,
    "kilograms": 2.20462,
    "g": 0.00220462,
    "grams": 0.00220462,
    "oz": 0.0625,
    "ounces": 0.0625,
}
DEFAULT_LOW_STOCK_THRESHOLD = 10


@dataclass
class ProductSyncResult:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.created + self.updated

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "total": self.total,
            "errors": self.errors,
        }


def to_pounds(weight: Any, unit: Optional[str]) -> Optional[float]:
    """Unknown units are taken as pounds."""
    if weight is None:
        return None
    return round(float(weight) * LB_PER_UNIT.get((unit or "lb").lower(), 1.0), 4)


def variant_fields(product: dict, variant: dict) -> dict[str, Any]:
    title = product.get("title") or ""
    variant_title = variant.get("title")
    name = title if not variant_title or variant_title == "Default Title" else f"{title} - {variant_title}"
    return {
        "sku": (variant.get("sku") or "").strip(),
        "name": name or variant.get("sku"),
        "description": product.get("body_html") or None,
        "barcode": variant.get("barcode") or None,
        "weight": to_pounds(variant.get("weight"), variant.get("weight_unit")),
        "shopify_product_id": str(product["id"]),
        "shopify_variant_id": str(variant["id"]),
    }


async def find_match(session: AsyncSession, fields: dict) -> Optional[Product]:
    """Variant id first, then an unlinked product of the same Shopify product, then an unlinked SKU."""
    candidates = (
        Product.shopify_variant_id == fields["shopify_variant_id"],
        (Product.shopify_product_id == fields["shopify_product_id"]) & Product.shopify_variant_id.is_(None),
        (Product.sku == fields["sku"]) & Product.shopify_product_id.is_(None) & Product.shopify_variant_id.is_(None),
    )
    for condition in candidates:
        product = (await session.execute(select(Product).where(condition).limit(1))).scalar_one_or_none()
        if product is not None:
            return product
    return None


async def _sku_taken(session: AsyncSession, sku: str, product_id: Optional[int]) -> bool:
    q = select(Product.id).where(Product.sku == sku)
    if product_id is not None:
        q = q.where(Product.id != product_id)
    return (await session.execute(q.limit(1))).scalar_one_or_none() is not None


async def sync_products(session: AsyncSession, shopify_products: list[dict]) -> ProductSyncResult:
    """
    Create or update one local product per Shopify variant that has a SKU.

    A variant whose SKU already belongs to another local product is reported
    in ``errors`` and left alone; the rest of the catalog still syncs.
    """
    result = ProductSyncResult()

    for shopify_product in shopify_products:
        for variant in shopify_product.get("variants") or []:
            if not (variant.get("sku") or "").strip():
                result.skipped += 1
                continue
            if shopify_product.get("id") is None or variant.get("id") is None:
                result.errors.append(f"SKU {variant['sku'].strip()}: missing Shopify product or variant id")
                continue

            fields = variant_fields(shopify_product, variant)
            existing = await find_match(session, fields)
            if await _sku_taken(session, fields["sku"], existing.id if existing else None):
                result.errors.append(f"SKU {fields['sku']}: already used by another product")
                continue

            if existing is None:
                session.add(Product(
                    current_stock=0,
                    low_stock_threshold=DEFAULT_LOW_STOCK_THRESHOLD,
                    **fields,
                ))
                result.created += 1
            else:
                for key, value in fields.items():
                    setattr(existing, key, value)
                result.updated += 1
            await session.flush()

    await session.commit()
    logger.info(
        f"[ProductSync] {result.created} created, {result.updated} updated, "
        f"{result.skipped} skipped, {len(result.errors)} error(s)"
    )
    return result


async def sync_catalog(session: AsyncSession, shopify: ShopifyClient) -> ProductSyncResult:
    return await sync_products(session, await shopify.fetch_products())

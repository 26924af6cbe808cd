"""
Inventory Service Layer
Append-only stock ledger: receiving, adjustments, returns and reconciliation.

Every change to Product.current_stock is made with an atomic UPDATE in the
same transaction as the InventoryTransaction row describing it, so
current_stock always equals the sum of the product's ledger quantities.
"""
from dataclasses import dataclass
from typing import Optional
import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func

from warehouse.core.errors import ProductNotFound, ValidationFailed
from warehouse.db.enums import TransactionType
from warehouse.db.models import Product, InventoryTransaction

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    product_id: int
    sku: str
    current_stock: int
    ledger_total: int

    @property
    def drift(self) -> int:
        return self.current_stock - self.ledger_total

    @property
    def consistent(self) -> bool:
        return self.drift == 0

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "sku": self.sku,
            "current_stock": self.current_stock,
            "ledger_total": self.ledger_total,
            "drift": self.drift,
            "consistent": self.consistent,
        }


async def get_product(session: AsyncSession, product_id: int) -> Product:
    product = await session.get(Product, product_id)
    if product is None:
        raise ProductNotFound(product_id)
    return product


async def get_product_by_sku(session: AsyncSession, sku: str) -> Optional[Product]:
    """Case-insensitive SKU lookup."""
    q = select(Product).where(func.lower(Product.sku) == sku.strip().lower())
    res = await session.execute(q)
    return res.scalars().first()


async def create_product(
    session: AsyncSession,
    sku: str,
    name: str,
    created_by_id: int,
    initial_stock: int = 0,
    low_stock_threshold: int = 10,
    description: Optional[str] = None,
    barcode: Optional[str] = None,
    weight: Optional[float] = None,
    length: Optional[float] = None,
    width: Optional[float] = None,
    height: Optional[float] = None,
    shopify_product_id: Optional[str] = None,
    shopify_variant_id: Optional[str] = None,
) -> Product:
    """
    Create a product. Initial stock is booked as a RECEIVED ledger entry.

    Raises:
        ValidationFailed: duplicate SKU or negative initial stock
    """
    if initial_stock < 0:
        raise ValidationFailed("Initial stock cannot be negative", {"initial_stock": initial_stock})
    if await get_product_by_sku(session, sku):
        raise ValidationFailed(f"Product with SKU {sku} already exists", {"sku": sku})

    product = Product(
        sku=sku.strip(),
        name=name,
        description=description,
        barcode=barcode,
        weight=weight,
        length=length,
        width=width,
        height=height,
        current_stock=initial_stock,
        low_stock_threshold=low_stock_threshold,
        shopify_product_id=shopify_product_id,
        shopify_variant_id=shopify_variant_id,
    )
    session.add(product)
    await session.flush()

    if initial_stock > 0:
        session.add(InventoryTransaction(
            product_id=product.id,
            quantity=initial_stock,
            type=TransactionType.RECEIVED,
            user_id=created_by_id,
            notes="Initial stock",
        ))

    await session.commit()
    logger.info(f"[Inventory] Created product: sku={product.sku}, stock={initial_stock}")
    return product


async def _apply_movement(
    session: AsyncSession,
    product_id: int,
    delta: int,
    kind: TransactionType,
    user_id: int,
    notes: Optional[str],
) -> InventoryTransaction:
    """Change stock by ``delta`` and record it. Does not commit."""
    upd = (
        update(Product)
        .where(Product.id == product_id, Product.current_stock + delta >= 0)
        .values(current_stock=Product.current_stock + delta, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(upd)
    if result.rowcount != 1:
        raise ValidationFailed(
            "Stock movement would make stock negative",
            {"product_id": product_id, "delta": delta},
        )

    entry = InventoryTransaction(
        product_id=product_id,
        quantity=delta,
        type=kind,
        user_id=user_id,
        notes=notes,
    )
    session.add(entry)
    return entry


async def _commit_movement(session: AsyncSession, product: Product, coro) -> Optional[InventoryTransaction]:
    try:
        entry = await coro
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    await session.refresh(product)
    if entry is not None:
        await session.refresh(entry)
    return entry


async def receive_stock(
    session: AsyncSession,
    product_id: int,
    quantity: int,
    user_id: int,
    notes: Optional[str] = None,
) -> tuple[Product, InventoryTransaction]:
    """Book incoming stock as a RECEIVED entry."""
    if quantity <= 0:
        raise ValidationFailed("Receive quantity must be > 0", {"quantity": quantity})
    product = await get_product(session, product_id)

    entry = await _commit_movement(
        session, product,
        _apply_movement(session, product.id, quantity, TransactionType.RECEIVED, user_id, notes or "Stock received"),
    )
    logger.info(f"[Inventory] Received: sku={product.sku}, +{quantity}, new_stock={product.current_stock}")
    return product, entry


async def return_stock(
    session: AsyncSession,
    product_id: int,
    quantity: int,
    user_id: int,
    notes: Optional[str] = None,
) -> tuple[Product, InventoryTransaction]:
    """Book customer returns back into stock as a RETURNED entry."""
    if quantity <= 0:
        raise ValidationFailed("Return quantity must be > 0", {"quantity": quantity})
    product = await get_product(session, product_id)

    entry = await _commit_movement(
        session, product,
        _apply_movement(session, product.id, quantity, TransactionType.RETURNED, user_id, notes or "Customer return"),
    )
    logger.info(f"[Inventory] Returned: sku={product.sku}, +{quantity}, new_stock={product.current_stock}")
    return product, entry


async def adjust_stock(
    session: AsyncSession,
    product_id: int,
    new_stock: int,
    user_id: int,
    notes: str,
) -> tuple[Product, Optional[InventoryTransaction]]:
    """
    Set stock to an absolute count after a physical count.

    Writes an ADJUSTED entry with the signed difference. When the count
    already matches, nothing is written and the entry is None.
    """
    if new_stock < 0:
        raise ValidationFailed("Stock cannot be negative", {"new_stock": new_stock})
    if not notes or not notes.strip():
        raise ValidationFailed("Notes are required for adjustments")

    product = await get_product(session, product_id)
    delta = new_stock - product.current_stock
    if delta == 0:
        return product, None

    # Guarded on the observed count so a concurrent movement is not overwritten
    async def _adjust():
        upd = (
            update(Product)
            .where(Product.id == product.id, Product.current_stock == product.current_stock)
            .values(current_stock=new_stock, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(upd)
        if result.rowcount != 1:
            raise ValidationFailed(
                "Stock changed while adjusting; recount and retry",
                {"product_id": product.id},
            )
        entry = InventoryTransaction(
            product_id=product.id,
            quantity=delta,
            type=TransactionType.ADJUSTED,
            user_id=user_id,
            notes=notes.strip(),
        )
        session.add(entry)
        return entry

    entry = await _commit_movement(session, product, _adjust())
    logger.info(f"[Inventory] Adjusted: sku={product.sku}, delta={delta:+d}, new_stock={product.current_stock}")
    return product, entry


async def list_transactions(
    session: AsyncSession,
    product_id: Optional[int] = None,
    kind: Optional[TransactionType] = None,
    limit: int = 100,
    offset: int = 0,
) -> list[InventoryTransaction]:
    """Ledger entries, newest first."""
    query = select(InventoryTransaction)
    if product_id is not None:
        query = query.where(InventoryTransaction.product_id == product_id)
    if kind is not None:
        query = query.where(InventoryTransaction.type == kind)
    query = (
        query.order_by(InventoryTransaction.created_at.desc(), InventoryTransaction.id.desc())
        .limit(limit)
        .offset(offset)
    )
    result = await session.execute(query)
    return list(result.scalars().all())


async def recent_receives(session: AsyncSession, limit: int = 20) -> list[InventoryTransaction]:
    return await list_transactions(session, kind=TransactionType.RECEIVED, limit=limit)


async def ledger_total(session: AsyncSession, product_id: int) -> int:
    q = select(func.coalesce(func.sum(InventoryTransaction.quantity), 0)).where(
        InventoryTransaction.product_id == product_id
    )
    return int(await session.scalar(q))


async def reconcile_product(session: AsyncSession, product_id: int) -> ReconciliationResult:
    """Replay the ledger for one product and compare with current_stock."""
    product = await get_product(session, product_id)
    await session.refresh(product)
    total = await ledger_total(session, product.id)
    result = ReconciliationResult(product.id, product.sku, product.current_stock, total)
    if not result.consistent:
        logger.error(
            f"[Inventory] Ledger drift for {product.sku}: stock={product.current_stock}, ledger={total}"
        )
    return result


async def reconcile_all(session: AsyncSession) -> list[ReconciliationResult]:
    totals = (
        select(
            InventoryTransaction.product_id,
            func.sum(InventoryTransaction.quantity).label("total"),
        )
        .group_by(InventoryTransaction.product_id)
        .subquery()
    )
    q = (
        select(Product.id, Product.sku, Product.current_stock, func.coalesce(totals.c.total, 0))
        .outerjoin(totals, totals.c.product_id == Product.id)
        .order_by(Product.id)
    )
    rows = (await session.execute(q)).all()
    results = [ReconciliationResult(r[0], r[1], r[2], int(r[3])) for r in rows]
    drifted = [r for r in results if not r.consistent]
    if drifted:
        logger.error(f"[Inventory] Ledger drift on {len(drifted)} product(s): {[r.sku for r in drifted]}")
    return results


async def list_low_stock(session: AsyncSession) -> list[Product]:
    q = (
        select(Product)
        .where(Product.current_stock <= Product.low_stock_threshold)
        .order_by(Product.current_stock, Product.sku)
    )
    return list((await session.execute(q)).scalars().all())


async def inventory_summary(session: AsyncSession) -> dict:
    q = select(
        func.count(Product.id),
        func.coalesce(func.sum(Product.current_stock), 0),
    )
    total_products, total_units = (await session.execute(q)).one()
    low = await list_low_stock(session)
    out_of_stock = sum(1 for p in low if p.current_stock == 0)
    return {
        "total_products": int(total_products),
        "total_units": int(total_units),
        "low_stock_count": len(low),
        "out_of_stock_count": out_of_stock,
    }

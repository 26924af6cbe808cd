from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text, Index, Float, Numeric,
    LargeBinary, CheckConstraint, UniqueConstraint,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from warehouse.db.database import Base
from warehouse.db.enums import UserRole, OrderStatus, TransactionType


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(100), nullable=False)
    role = Column(SAEnum(UserRole, name="userrole"), default=UserRole.EMPLOYEE, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


# ------------------ Inventory ------------------
class Product(Base):
    """Stock-keeping unit. current_stock always equals the sum of its ledger."""
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("current_stock >= 0", name="ck_products_current_stock_nonnegative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String(100), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    barcode = Column(String(100), nullable=True, index=True)
    weight = Column(Float, nullable=True)  # lb
    length = Column(Float, nullable=True)  # in
    width = Column(Float, nullable=True)
    height = Column(Float, nullable=True)
    current_stock = Column(Integer, default=0, nullable=False)
    low_stock_threshold = Column(Integer, default=10, nullable=False)
    shopify_product_id = Column(String(64), nullable=True)
    shopify_variant_id = Column(String(64), unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    transactions = relationship(
        "InventoryTransaction",
        back_populates="product",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_low_stock(self) -> bool:
        return self.current_stock <= self.low_stock_threshold


class InventoryTransaction(Base):
    """
    Append-only ledger of stock movements.
    Rows are never updated or deleted by the application.
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        Index("ix_inventory_transactions_product_id", "product_id"),
        Index("ix_inventory_transactions_type", "type"),
        Index("ix_inventory_transactions_created_at", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, nullable=False)  # Negative for shipped/removed stock
    type = Column(SAEnum(TransactionType, name="transactiontype"), nullable=False)
    notes = Column(Text, nullable=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    product = relationship("Product", back_populates="transactions")
    user = relationship("User")


# ------------------ Orders ------------------
class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_status", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    shopify_order_id = Column(String(64), unique=True, nullable=False)
    order_number = Column(String(64), nullable=False)
    customer_name = Column(String(255), nullable=False, default="Unknown")
    customer_email = Column(String(255), nullable=True)
    shipping_address1 = Column(String(255), nullable=True)
    shipping_address2 = Column(String(255), nullable=True)
    shipping_city = Column(String(100), nullable=True)
    shipping_state = Column(String(100), nullable=True)
    shipping_zip = Column(String(20), nullable=True)
    shipping_country = Column(String(2), nullable=True, default="US")
    status = Column(SAEnum(OrderStatus, name="orderstatus"), nullable=False, default=OrderStatus.PENDING)
    total_price = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")
    shopify_created_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="OrderItem.id",
    )
    shipments = relationship(
        "Shipment",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Shipment.id",
    )


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (
        UniqueConstraint("order_id", "shopify_line_item_id", name="uq_order_items_line_item"),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    shopify_line_item_id = Column(String(64), nullable=False)
    sku = Column(String(100), nullable=False)
    name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    # Null link is valid but blocks fulfillment
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")


class Shipment(Base):
    __tablename__ = "shipments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    carrier = Column(String(20), nullable=False)
    service = Column(String(100), nullable=False)
    tracking_number = Column(String(100), nullable=False, index=True)
    label_url = Column(String(500), nullable=True)
    label_data = Column(LargeBinary, nullable=True)
    label_format = Column(String(10), nullable=True)
    shipment_cost = Column(Numeric(10, 2), nullable=True)
    currency = Column(String(3), nullable=False, default="USD")
    shipped_at = Column(DateTime(timezone=True), server_default=func.now())
    shipped_by_user_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    order = relationship("Order", back_populates="shipments")
    shipped_by = relationship("User")

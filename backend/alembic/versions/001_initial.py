"""Initial warehouse schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create enum types used by models
    userrole_enum = sa.Enum('ADMIN', 'EMPLOYEE', name='userrole')
    orderstatus_enum = sa.Enum('PENDING', 'PROCESSING', 'SHIPPED', 'ON_HOLD', 'CANCELLED', name='orderstatus')
    transactiontype_enum = sa.Enum('RECEIVED', 'SHIPPED', 'ADJUSTED', 'RETURNED', name='transactiontype')
    for enum_type in (userrole_enum, orderstatus_enum, transactiontype_enum):
        enum_type.create(op.get_bind(), checkfirst=True)

    # Users table
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(255), unique=True, nullable=False, index=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('role', sa.Enum(name='userrole', create_type=False), nullable=False, server_default='EMPLOYEE'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Products table
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('sku', sa.String(100), unique=True, nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('barcode', sa.String(100), index=True),
        sa.Column('weight', sa.Float()),
        sa.Column('length', sa.Float()),
        sa.Column('width', sa.Float()),
        sa.Column('height', sa.Float()),
        sa.Column('current_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('low_stock_threshold', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('shopify_product_id', sa.String(64)),
        sa.Column('shopify_variant_id', sa.String(64), unique=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint('current_stock >= 0', name='ck_products_current_stock_nonnegative'),
    )

    # Inventory ledger
    op.create_table(
        'inventory_transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('type', sa.Enum(name='transactiontype', create_type=False), nullable=False),
        sa.Column('notes', sa.Text()),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_inventory_transactions_product_id', 'inventory_transactions', ['product_id'])
    op.create_index('ix_inventory_transactions_type', 'inventory_transactions', ['type'])
    op.create_index('ix_inventory_transactions_created_at', 'inventory_transactions', ['created_at'])

    # Orders table
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('shopify_order_id', sa.String(64), unique=True, nullable=False),
        sa.Column('order_number', sa.String(64), nullable=False),
        sa.Column('customer_name', sa.String(255), nullable=False),
        sa.Column('customer_email', sa.String(255)),
        sa.Column('shipping_address1', sa.String(255)),
        sa.Column('shipping_address2', sa.String(255)),
        sa.Column('shipping_city', sa.String(100)),
        sa.Column('shipping_state', sa.String(100)),
        sa.Column('shipping_zip', sa.String(20)),
        sa.Column('shipping_country', sa.String(2)),
        sa.Column('status', sa.Enum(name='orderstatus', create_type=False), nullable=False, server_default='PENDING'),
        sa.Column('total_price', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('shopify_created_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_orders_status', 'orders', ['status'])

    # Order line items
    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('shopify_line_item_id', sa.String(64), nullable=False),
        sa.Column('sku', sa.String(100), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id', ondelete='SET NULL'), index=True),
        sa.UniqueConstraint('order_id', 'shopify_line_item_id', name='uq_order_items_line_item'),
    )

    # Shipments (one per purchased label)
    op.create_table(
        'shipments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('carrier', sa.String(20), nullable=False),
        sa.Column('service', sa.String(100), nullable=False),
        sa.Column('tracking_number', sa.String(100), nullable=False, index=True),
        sa.Column('label_url', sa.String(500)),
        sa.Column('label_data', sa.LargeBinary()),
        sa.Column('label_format', sa.String(10)),
        sa.Column('shipment_cost', sa.Numeric(10, 2)),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('shipped_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('shipped_by_user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table('shipments')
    op.drop_table('order_items')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_table('orders')
    op.drop_index('ix_inventory_transactions_created_at', table_name='inventory_transactions')
    op.drop_index('ix_inventory_transactions_type', table_name='inventory_transactions')
    op.drop_index('ix_inventory_transactions_product_id', table_name='inventory_transactions')
    op.drop_table('inventory_transactions')
    op.drop_table('products')
    op.drop_table('users')

    for name in ('transactiontype', 'orderstatus', 'userrole'):
        sa.Enum(name=name).drop(op.get_bind(), checkfirst=True)

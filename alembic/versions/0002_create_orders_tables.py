"""create orders and order_items tables

Revision ID: 0002_create_orders
Revises: 0001_create_products
Create Date: 2026-10-19 00:00:00.000001
"""
from alembic import op
import sqlalchemy as sa

revision = '0002_create_orders'
down_revision = '0001_create_products'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(length=64), nullable=True),
        sa.Column('transaction_uuid', sa.String(length=64), nullable=False),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('shipping_charge', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('tax', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING'),
        sa.Column('esewa_ref_id', sa.String(length=64), nullable=True),
        sa.Column('needs_attention', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('settlement_error', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('settled_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('total_amount >= 0', name='ck_orders_total_nonneg'),
        sa.CheckConstraint("status IN ('PENDING', 'COMPLETED', 'FAILED')", name='ck_orders_status'),
        # the transaction_uuid is the idempotency key of every callback
        sa.UniqueConstraint('transaction_uuid', name='uq_orders_transaction_uuid'),
    )
    op.create_index(op.f('ix_orders_id'), 'orders', ['id'])
    op.create_index('ix_orders_user_created', 'orders', ['user_id', 'created_at'])
    # flagged settlements are picked up by scripts/retry_flagged_settlements.py
    op.create_index(
        'ix_orders_needs_attention', 'orders', ['needs_attention'],
        postgresql_where=sa.text('needs_attention'),
    )

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_orderitem_quantity_pos'),
        sa.CheckConstraint('unit_price >= 0', name='ck_orderitem_price_nonneg'),
    )
    op.create_index(op.f('ix_order_items_id'), 'order_items', ['id'])


def downgrade():
    op.drop_index(op.f('ix_order_items_id'), table_name='order_items')
    op.drop_table('order_items')
    op.drop_index('ix_orders_needs_attention', table_name='orders')
    op.drop_index('ix_orders_user_created', table_name='orders')
    op.drop_index(op.f('ix_orders_id'), table_name='orders')
    op.drop_table('orders')

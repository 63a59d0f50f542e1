"""Initial schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2025-11-03 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create initial database schema"""

    # Заказы
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_number', sa.String(32), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('guest_email', sa.String(255), nullable=True),
        sa.Column('guest_phone', sa.String(32), nullable=True),
        sa.Column('status', sa.String(32), nullable=False, server_default='PENDING'),
        sa.Column('payment_status', sa.String(32), nullable=False, server_default='PENDING'),
        sa.Column('payment_reference', sa.String(255), nullable=True),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('subtotal', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('shipping_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('shipping_address', sa.JSON(), nullable=True),
        sa.Column('billing_address', sa.JSON(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('archived_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number'),
        sa.CheckConstraint(
            'user_id IS NOT NULL OR guest_email IS NOT NULL OR guest_phone IS NOT NULL',
            name='chk_orders_owner',
        ),
        sa.CheckConstraint(
            "status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'CANCELLED', "
            "'REFUNDED', 'PARTIALLY_REFUNDED')",
            name='chk_orders_status',
        ),
        sa.CheckConstraint('total_amount >= 0', name='chk_orders_total_amount'),
    )
    op.create_index('idx_orders_status', 'orders', ['status'], unique=False)
    op.create_index('idx_orders_user_id', 'orders', ['user_id'], unique=False)
    op.create_index('idx_orders_created_at', 'orders', ['created_at'], unique=False)

    # Позиции заказа
    op.create_table(
        'order_line_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('merchant_id', sa.String(64), nullable=False),
        sa.Column('product_id', sa.String(64), nullable=False),
        sa.Column('variant_id', sa.String(64), nullable=True),
        sa.Column('type', sa.String(16), nullable=False),
        sa.Column('status', sa.String(32), nullable=False, server_default='pending'),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('unit_price', sa.Integer(), nullable=False),
        sa.Column('total_price', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('fulfillment_data', sa.JSON(), nullable=True),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('product_sku', sa.String(100), nullable=True),
        sa.Column('variant_attributes', sa.JSON(), nullable=True),
        sa.Column('last_status_change', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.CheckConstraint(
            "type IN ('physical', 'digital', 'service')", name='chk_line_items_type'
        ),
        sa.CheckConstraint('quantity >= 1', name='chk_line_items_quantity'),
        sa.CheckConstraint('unit_price >= 0', name='chk_line_items_unit_price'),
    )
    op.create_index('idx_line_items_order_id', 'order_line_items', ['order_id'], unique=False)
    op.create_index(
        'idx_line_items_merchant_status',
        'order_line_items',
        ['merchant_id', 'status'],
        unique=False,
    )

    # Журнал переходов
    op.create_table(
        'order_status_transitions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('line_item_id', sa.Integer(), nullable=True),
        sa.Column('from_status', sa.String(32), nullable=True),
        sa.Column('to_status', sa.String(32), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('actor_id', sa.String(64), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['line_item_id'], ['order_line_items.id']),
        sa.CheckConstraint(
            '(order_id IS NOT NULL AND line_item_id IS NULL) '
            'OR (order_id IS NULL AND line_item_id IS NOT NULL)',
            name='chk_transitions_single_subject',
        ),
    )
    op.create_index(
        'idx_transitions_line_item',
        'order_status_transitions',
        ['line_item_id', 'created_at'],
        unique=False,
    )
    op.create_index(
        'idx_transitions_order',
        'order_status_transitions',
        ['order_id', 'created_at'],
        unique=False,
    )

    # Outbox
    op.create_table(
        'order_outbox',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('aggregate_id', sa.Integer(), nullable=False),
        sa.Column('aggregate_type', sa.String(32), nullable=False),
        sa.Column('event_type', sa.String(64), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('idempotency_key', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('next_attempt_at', sa.DateTime(), nullable=True),
        sa.Column('claimed_at', sa.DateTime(), nullable=True),
        sa.Column('claimed_by', sa.String(128), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key'),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'processed', 'failed')", name='chk_outbox_status'
        ),
        sa.CheckConstraint('retry_count >= 0', name='chk_outbox_retry_count'),
    )
    op.create_index(
        'idx_outbox_status_next_attempt',
        'order_outbox',
        ['status', 'next_attempt_at', 'created_at'],
        unique=False,
    )
    op.create_index(
        'idx_outbox_aggregate', 'order_outbox', ['aggregate_type', 'aggregate_id'], unique=False
    )
    op.create_index('idx_outbox_processed_at', 'order_outbox', ['processed_at'], unique=False)

    # Дедупликация у потребителей
    op.create_table(
        'consumed_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('consumer', sa.String(128), nullable=False),
        sa.Column('idempotency_key', sa.String(255), nullable=False),
        sa.Column('event_type', sa.String(64), nullable=True),
        sa.Column('consumed_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('consumer', 'idempotency_key', name='uq_consumed_events_key'),
    )


def downgrade() -> None:
    """Drop all tables"""
    op.drop_table('consumed_events')
    op.drop_index('idx_outbox_processed_at', table_name='order_outbox')
    op.drop_index('idx_outbox_aggregate', table_name='order_outbox')
    op.drop_index('idx_outbox_status_next_attempt', table_name='order_outbox')
    op.drop_table('order_outbox')
    op.drop_index('idx_transitions_order', table_name='order_status_transitions')
    op.drop_index('idx_transitions_line_item', table_name='order_status_transitions')
    op.drop_table('order_status_transitions')
    op.drop_index('idx_line_items_merchant_status', table_name='order_line_items')
    op.drop_index('idx_line_items_order_id', table_name='order_line_items')
    op.drop_table('order_line_items')
    op.drop_index('idx_orders_created_at', table_name='orders')
    op.drop_index('idx_orders_user_id', table_name='orders')
    op.drop_index('idx_orders_status', table_name='orders')
    op.drop_table('orders')

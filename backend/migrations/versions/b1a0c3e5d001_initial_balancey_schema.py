"""initial balancey schema

Revision ID: b1a0c3e5d001
Revises:
Create Date: 2026-10-17 00:00:00.000000

Creates the ledger schema:
- customers / customer_tags: customer master and risk tags (one row per tag)
- products / inventory / inventory_adjustments: stock counters and audit trail
- orders / order_items / payments / fulfillments: order documents and ledgers
- order_policies: point-in-time policy snapshot per order
- settings: policy and display tunables (singleton)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b1a0c3e5d001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # customers
    # ============================================================================
    op.create_table(
        'customers',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('default_fulfillment_method', sa.String(length=16), nullable=True),
        sa.Column('default_address', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_customers_is_active', 'customers', ['is_active'])
    op.create_index('ix_customers_active_name', 'customers', ['is_active', 'name'])

    op.create_table(
        'customer_tags',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('customer_id', sa.String(length=36), nullable=False),
        sa.Column('tag', sa.String(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('customer_id', 'tag', name='uq_customer_tags_customer_tag'),
    )
    op.create_index('ix_customer_tags_customer_id', 'customer_tags', ['customer_id'])
    op.create_index('ix_customer_tags_tag', 'customer_tags', ['tag'])

    # ============================================================================
    # products / inventory
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('quality', sa.String(length=16), nullable=False),
        sa.Column('sell_mode', sa.String(length=16), nullable=False),
        sa.Column('price_per_gram_cents', sa.Float(), nullable=True),
        sa.Column('unit_name', sa.String(length=64), nullable=True),
        sa.Column('price_per_unit_cents', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_products_is_active', 'products', ['is_active'])
    op.create_index('ix_products_quality_active', 'products', ['quality', 'is_active'])

    op.create_table(
        'inventory',
        sa.Column('product_id', sa.String(length=36), nullable=False),
        sa.Column('on_hand_grams', sa.Float(), nullable=False),
        sa.Column('reserved_grams', sa.Float(), nullable=False),
        sa.Column('on_hand_units', sa.Float(), nullable=False),
        sa.Column('reserved_units', sa.Float(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('product_id'),
    )

    op.create_table(
        'inventory_adjustments',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('product_id', sa.String(length=36), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('grams_adjustment', sa.Float(), nullable=False),
        sa.Column('units_adjustment', sa.Float(), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_inventory_adjustments_product_id', 'inventory_adjustments', ['product_id'])
    op.create_index('ix_inv_adjustments_product_created', 'inventory_adjustments', ['product_id', 'created_at'])

    # ============================================================================
    # orders and ledgers
    # ============================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('customer_id', sa.String(length=36), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('fulfillment_method', sa.String(length=16), nullable=False),
        sa.Column('delivery_address', sa.String(length=255), nullable=True),
        sa.Column('delivery_fee_cents', sa.Integer(), nullable=False),
        sa.Column('due_at', sa.DateTime(), nullable=True),
        sa.Column('late_at', sa.DateTime(), nullable=True),
        sa.Column('inventory_fulfilled_at', sa.DateTime(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_customer_created', 'orders', ['customer_id', 'created_at'])
    op.create_index('ix_orders_status_due', 'orders', ['status', 'due_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=False),
        sa.Column('product_id', sa.String(length=36), nullable=True),
        sa.Column('quantity_grams', sa.Float(), nullable=True),
        sa.Column('quantity_units', sa.Float(), nullable=True),
        sa.Column('price_per_gram_cents_snapshot', sa.Float(), nullable=True),
        sa.Column('price_per_unit_cents_snapshot', sa.Integer(), nullable=True),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])

    op.create_table(
        'payments',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=16), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payments_order_id', 'payments', ['order_id'])

    op.create_table(
        'fulfillments',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('delivered_grams', sa.Float(), nullable=True),
        sa.Column('delivered_units', sa.Float(), nullable=True),
        sa.Column('event', sa.String(length=32), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_fulfillments_order_id', 'fulfillments', ['order_id'])

    op.create_table(
        'order_policies',
        sa.Column('order_id', sa.String(length=36), nullable=False),
        sa.Column('computed_typical_grams', sa.Float(), nullable=True),
        sa.Column('computed_typical_units', sa.Float(), nullable=True),
        sa.Column('computed_upper_normal_grams', sa.Float(), nullable=True),
        sa.Column('computed_upper_normal_units', sa.Float(), nullable=True),
        sa.Column('is_over_typical', sa.Boolean(), nullable=False),
        sa.Column('applied_tier', sa.String(length=32), nullable=True),
        sa.Column('applied_holdback_pct', sa.Float(), nullable=False),
        sa.Column('applied_deposit_min_pct', sa.Float(), nullable=False),
        sa.Column('computed_deliver_now_grams', sa.Float(), nullable=True),
        sa.Column('computed_deliver_now_units', sa.Float(), nullable=True),
        sa.Column('computed_withheld_grams', sa.Float(), nullable=True),
        sa.Column('computed_withheld_units', sa.Float(), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('order_id'),
    )

    # ============================================================================
    # settings (singleton)
    # ============================================================================
    op.create_table(
        'settings',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('deposit_min_pct_normal', sa.Float(), nullable=False),
        sa.Column('holdback_pct_normal', sa.Float(), nullable=False),
        sa.Column('deposit_min_pct_over_typical', sa.Float(), nullable=False),
        sa.Column('holdback_pct_over_typical', sa.Float(), nullable=False),
        sa.Column('deposit_min_pct_late', sa.Float(), nullable=False),
        sa.Column('holdback_pct_late', sa.Float(), nullable=False),
        sa.Column('do_not_advance_blocks_order', sa.Boolean(), nullable=False),
        sa.Column('default_due_days', sa.Integer(), nullable=False),
        sa.Column('typical_order_history_count', sa.Integer(), nullable=False),
        sa.Column('typical_order_include_partial', sa.Boolean(), nullable=False),
        sa.Column('preset_weights', sa.JSON(), nullable=False),
        sa.Column('default_weight_unit', sa.String(length=4), nullable=False),
        sa.Column('grams_decimal_places', sa.Integer(), nullable=False),
        sa.Column('timezone', sa.String(length=64), nullable=True),
        sa.Column('monthly_goal_cents', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )


def downgrade():
    op.drop_table('settings')
    op.drop_table('order_policies')
    op.drop_index('ix_fulfillments_order_id', table_name='fulfillments')
    op.drop_table('fulfillments')
    op.drop_index('ix_payments_order_id', table_name='payments')
    op.drop_table('payments')
    op.drop_index('ix_order_items_product_id', table_name='order_items')
    op.drop_index('ix_order_items_order_id', table_name='order_items')
    op.drop_table('order_items')
    op.drop_index('ix_orders_status_due', table_name='orders')
    op.drop_index('ix_orders_customer_created', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_customer_id', table_name='orders')
    op.drop_table('orders')
    op.drop_index('ix_inv_adjustments_product_created', table_name='inventory_adjustments')
    op.drop_index('ix_inventory_adjustments_product_id', table_name='inventory_adjustments')
    op.drop_table('inventory_adjustments')
    op.drop_table('inventory')
    op.drop_index('ix_products_quality_active', table_name='products')
    op.drop_index('ix_products_is_active', table_name='products')
    op.drop_table('products')
    op.drop_index('ix_customer_tags_tag', table_name='customer_tags')
    op.drop_index('ix_customer_tags_customer_id', table_name='customer_tags')
    op.drop_table('customer_tags')
    op.drop_index('ix_customers_active_name', table_name='customers')
    op.drop_index('ix_customers_is_active', table_name='customers')
    op.drop_table('customers')

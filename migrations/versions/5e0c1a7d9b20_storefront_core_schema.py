"""storefront core schema: catalogue, reservations, orders, refunds, zones, discount codes, stock alerts

Revision ID: 5e0c1a7d9b20
Revises:
Create Date: 2026-10-19 10:12:41.204417

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '5e0c1a7d9b20'
down_revision = None
branch_labels = None
depends_on = None


def _status(name, *values):
    return sa.Column(name, sa.Enum(*values, native_enum=False, length=32), nullable=False)


ORDER_STATUSES = ('pending', 'paid', 'processing', 'shipped', 'delivered', 'collected',
                  'cancelled', 'refund_requested', 'refunded')


def upgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    tables = inspector.get_table_names()

    if 'users' not in tables:
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('username', sa.String(length=255), nullable=False, unique=True),
            sa.Column('email', sa.String(length=255), nullable=False, unique=True),
            sa.Column('password', sa.String(length=255), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
        )

    if 'customers' not in tables:
        op.create_table(
            'customers',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('name', sa.String(length=255), nullable=False),
            sa.Column('email', sa.String(length=255), nullable=False, unique=True),
            sa.Column('password', sa.String(length=255), nullable=False),
            sa.Column('phone', sa.String(length=50), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
        )

    if 'products' not in tables:
        op.create_table(
            'products',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('sku', sa.String(length=100), nullable=False, unique=True),
            sa.Column('name', sa.String(length=255), nullable=False),
            sa.Column('base_price_cents', sa.Integer(), nullable=False),
            sa.Column('stock', sa.Integer(), nullable=False),
            sa.Column('low_stock_threshold', sa.Integer(), nullable=False),
            sa.Column('holding_fee_cents', sa.Integer(), nullable=False),
            sa.Column('holding_period_days', sa.Integer(), nullable=False),
            sa.Column('active', sa.Boolean(), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
            sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
        )

    if 'bulk_discounts' not in tables:
        op.create_table(
            'bulk_discounts',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('product_id', sa.Integer(), nullable=True, index=True),
            sa.Column('min_quantity', sa.Integer(), nullable=False),
            sa.Column('discount_percent', sa.Integer(), nullable=False),
            sa.Column('active', sa.Boolean(), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(['product_id'], ['products.id']),
            sa.CheckConstraint('min_quantity >= 1', name='ck_bulk_discounts_min_quantity'),
            sa.CheckConstraint('discount_percent BETWEEN 1 AND 100', name='ck_bulk_discounts_percent'),
        )

    if 'delivery_zones' not in tables:
        op.create_table(
            'delivery_zones',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('name', sa.String(length=100), nullable=False),
            sa.Column('radius_km', sa.Integer(), nullable=False),
            sa.Column('base_fee_cents', sa.Integer(), nullable=False),
            sa.Column('per_unit_fee_cents', sa.Integer(), nullable=False),
            sa.Column('min_order_units', sa.Integer(), nullable=False),
            sa.Column('active', sa.Boolean(), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
        )

    if 'discount_codes' not in tables:
        op.create_table(
            'discount_codes',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('code', sa.String(length=50), nullable=False, unique=True),
            sa.Column('description', sa.String(length=255), nullable=True),
            _status('discount_type', 'percentage', 'fixed'),
            _status('discount_target', 'subtotal', 'shipping'),
            sa.Column('discount_value', sa.Integer(), nullable=False),
            sa.Column('min_purchase_cents', sa.Integer(), nullable=True),
            sa.Column('max_discount_cents', sa.Integer(), nullable=True),
            sa.Column('max_uses', sa.Integer(), nullable=True),
            sa.Column('max_uses_per_customer', sa.Integer(), nullable=True),
            sa.Column('used_count', sa.Integer(), nullable=False),
            sa.Column('active', sa.Boolean(), nullable=False),
            sa.Column('starts_at', sa.DateTime(), nullable=True),
            sa.Column('ends_at', sa.DateTime(), nullable=True),
            sa.Column('created_by', sa.String(length=255), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
            sa.CheckConstraint('discount_value > 0', name='ck_discount_codes_value_positive'),
            sa.CheckConstraint('used_count >= 0', name='ck_discount_codes_used_count'),
        )

    if 'orders' not in tables:
        op.create_table(
            'orders',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('order_number', sa.String(length=50), nullable=False, unique=True),
            sa.Column('customer_id', sa.Integer(), nullable=True, index=True),
            sa.Column('guest_name', sa.String(length=255), nullable=True),
            sa.Column('guest_email', sa.String(length=255), nullable=True),
            sa.Column('guest_phone', sa.String(length=50), nullable=True),
            sa.Column('originator', sa.String(length=255), nullable=True, index=True),
            _status('status', *ORDER_STATUSES),
            sa.Column('status_before_refund',
                      sa.Enum(*ORDER_STATUSES, native_enum=False, length=32), nullable=True),
            _status('delivery_method', 'click_collect', 'local_delivery'),
            sa.Column('delivery_zone_name', sa.String(length=100), nullable=True),
            sa.Column('delivery_address', sa.Text(), nullable=True),
            sa.Column('subtotal_cents', sa.Integer(), nullable=False),
            sa.Column('delivery_fee_cents', sa.Integer(), nullable=False),
            sa.Column('holding_fee_cents', sa.Integer(), nullable=False),
            sa.Column('total_cents', sa.Integer(), nullable=False),
            sa.Column('balance_due_cents', sa.Integer(), nullable=False),
            sa.Column('discount_code_id', sa.Integer(), nullable=True),
            sa.Column('discount_cents', sa.Integer(), nullable=False),
            sa.Column('refunded_cents', sa.Integer(), nullable=False),
            sa.Column('payment_reference', sa.String(length=255), nullable=True, unique=True),
            sa.Column('holding_period_days', sa.Integer(), nullable=True),
            sa.Column('holding_expires_at', sa.DateTime(), nullable=True),
            sa.Column('customer_notes', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=True, index=True),
            sa.Column('paid_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
            sa.ForeignKeyConstraint(['discount_code_id'], ['discount_codes.id']),
            sa.CheckConstraint('refunded_cents >= 0 AND refunded_cents <= total_cents',
                               name='ck_orders_refunded_within_total'),
            # order numbers are derived from the id
            sqlite_autoincrement=True,
        )
        op.create_index('ix_orders_status', 'orders', ['status'])

    if 'order_items' not in tables:
        op.create_table(
            'order_items',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('order_id', sa.Integer(), nullable=False, index=True),
            sa.Column('product_id', sa.Integer(), nullable=True),
            sa.Column('sku', sa.String(length=100), nullable=False),
            sa.Column('name', sa.String(length=255), nullable=False),
            sa.Column('quantity', sa.Integer(), nullable=False),
            sa.Column('base_price_cents', sa.Integer(), nullable=False),
            sa.Column('unit_price_cents', sa.Integer(), nullable=False),
            sa.Column('discount_percent', sa.Integer(), nullable=False),
            sa.Column('line_total_cents', sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
            sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        )

    if 'order_status_history' not in tables:
        op.create_table(
            'order_status_history',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('order_id', sa.Integer(), nullable=False, index=True),
            _status('status', *ORDER_STATUSES),
            sa.Column('note', sa.Text(), nullable=True),
            sa.Column('actor', sa.String(length=255), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        )

    if 'reservations' not in tables:
        op.create_table(
            'reservations',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('token', sa.String(length=64), nullable=False, unique=True),
            sa.Column('product_id', sa.Integer(), nullable=False, index=True),
            sa.Column('order_id', sa.Integer(), nullable=True, index=True),
            sa.Column('quantity', sa.Integer(), nullable=False),
            _status('status', 'active', 'committed', 'released', 'expired'),
            sa.Column('originator', sa.String(length=255), nullable=True),
            sa.Column('expires_at', sa.DateTime(), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('resolved_at', sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(['product_id'], ['products.id']),
            sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
            sa.CheckConstraint('quantity > 0', name='ck_reservations_quantity_positive'),
        )
        op.create_index('ix_reservations_status_expires', 'reservations', ['status', 'expires_at'])

    if 'refund_requests' not in tables:
        op.create_table(
            'refund_requests',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('order_id', sa.Integer(), nullable=False, index=True),
            sa.Column('customer_id', sa.Integer(), nullable=False),
            _status('status', 'pending', 'processing', 'approved', 'rejected'),
            sa.Column('reason', sa.Text(), nullable=False),
            sa.Column('requested_cents', sa.Integer(), nullable=False),
            sa.Column('approved_cents', sa.Integer(), nullable=True),
            sa.Column('gateway_refund_id', sa.String(length=255), nullable=True),
            sa.Column('admin_notes', sa.Text(), nullable=True),
            sa.Column('processed_by', sa.String(length=255), nullable=True),
            sa.Column('processed_at', sa.DateTime(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
            sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        )
        op.create_index('ix_refund_requests_status', 'refund_requests', ['status'])

    if 'discount_code_usage' not in tables:
        op.create_table(
            'discount_code_usage',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('discount_code_id', sa.Integer(), nullable=False, index=True),
            sa.Column('customer_id', sa.Integer(), nullable=False, index=True),
            sa.Column('order_id', sa.Integer(), nullable=False, unique=True),
            sa.Column('used_at', sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(['discount_code_id'], ['discount_codes.id']),
            sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
            sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        )

    if 'stock_subscriptions' not in tables:
        op.create_table(
            'stock_subscriptions',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('product_id', sa.Integer(), nullable=False),
            sa.Column('email', sa.String(length=255), nullable=False),
            sa.Column('customer_id', sa.Integer(), nullable=True),
            sa.Column('notified_at', sa.DateTime(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(['product_id'], ['products.id']),
            sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        )
        op.create_index('ix_stock_subscriptions_waiting', 'stock_subscriptions',
                        ['product_id', 'notified_at'])


def downgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    tables = inspector.get_table_names()
    for name in ('stock_subscriptions', 'discount_code_usage', 'refund_requests', 'reservations',
                 'order_status_history', 'order_items', 'orders', 'discount_codes',
                 'delivery_zones', 'bulk_discounts', 'products', 'customers', 'users'):
        if name in tables:
            op.drop_table(name)

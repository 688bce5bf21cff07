"""initial ledger schema

Revision ID: d1a0c0de0001
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates the complete dairy ledger schema:
- users, products, trucks, shops: reference data consumed by the engine
- deliveries, batches, stock_movements: batch store and append-only stock ledger
- truck_loads, truck_load_items: daily truck loads
- sales, sale_items: shop sales drawn from truck loads
- transport_allowances, truck_allowances: daily allowance pools
- daily_reconciliations, reconciliation_items: end-of-day close-out
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'd1a0c0de0001'
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable,
                     server_default=sa.text('CURRENT_TIMESTAMP'))


def upgrade():
    # ============================================================================
    # Reference data
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=80), nullable=False),
        sa.Column('full_name', sa.String(length=160), nullable=True),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint("role IN ('manager', 'driver')", name='ck_users_role'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=160), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('current_wholesale_price_cents', sa.Integer(), nullable=False),
        sa.Column('commission_per_unit_cents', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sa.CheckConstraint('current_wholesale_price_cents >= 0', name='ck_products_price_nonneg'),
        sa.CheckConstraint('commission_per_unit_cents >= 0', name='ck_products_commission_nonneg'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'trucks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('truck_number', sa.String(length=32), nullable=False),
        sa.Column('driver_id', sa.Integer(), nullable=True),
        sa.Column('max_allowance_limit_cents', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['driver_id'], ['users.id']),
        sa.UniqueConstraint('truck_number'),
        sa.CheckConstraint('max_allowance_limit_cents >= 0', name='ck_trucks_limit_nonneg'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_trucks_driver_id', 'trucks', ['driver_id'])

    op.create_table(
        'shops',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=160), nullable=False),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('distance', sa.Float(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # Batch store & stock ledger
    # ============================================================================
    op.create_table(
        'deliveries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('delivery_date', sa.Date(), nullable=False),
        sa.Column('delivery_note_number', sa.String(length=64), nullable=False),
        sa.Column('received_by', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['received_by'], ['users.id']),
        sa.UniqueConstraint('delivery_note_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_deliveries_delivery_date', 'deliveries', ['delivery_date'])

    op.create_table(
        'batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('delivery_id', sa.Integer(), nullable=True),
        sa.Column('batch_number', sa.String(length=64), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('remaining_quantity', sa.Integer(), nullable=False),
        sa.Column('expiry_date', sa.Date(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['delivery_id'], ['deliveries.id']),
        sa.UniqueConstraint('product_id', 'batch_number', name='uq_batches_product_number'),
        sa.CheckConstraint('remaining_quantity >= 0', name='ck_batches_remaining_nonneg'),
        sa.CheckConstraint('remaining_quantity <= quantity', name='ck_batches_remaining_le_quantity'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_batches_product_id', 'batches', ['product_id'])
    op.create_index('ix_batches_delivery_id', 'batches', ['delivery_id'])
    op.create_index('ix_batches_fifo', 'batches', ['product_id', 'expiry_date', 'created_at'])

    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=32), nullable=False),
        sa.Column('direction', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('reference_type', sa.String(length=32), nullable=False),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('movement_date', sa.Date(), nullable=False),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['batch_id'], ['batches.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.CheckConstraint('quantity > 0', name='ck_stock_movements_quantity_pos'),
        sa.CheckConstraint('direction IN (-1, 1)', name='ck_stock_movements_direction'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_batch_id', 'stock_movements', ['batch_id'])
    op.create_index('ix_stock_movements_movement_type', 'stock_movements', ['movement_type'])
    op.create_index('ix_stock_movements_batch_created', 'stock_movements', ['batch_id', 'id'])
    op.create_index('ix_stock_movements_reference', 'stock_movements', ['reference_type', 'reference_id'])
    op.create_index('ix_stock_movements_product_date', 'stock_movements', ['product_id', 'movement_date'])

    # ============================================================================
    # Truck loads
    # ============================================================================
    op.create_table(
        'truck_loads',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('truck_id', sa.Integer(), nullable=False),
        sa.Column('load_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('loaded_by', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('reconciled_by', sa.Integer(), nullable=True),
        sa.Column('reconciled_at', sa.DateTime(timezone=True), nullable=True),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['truck_id'], ['trucks.id']),
        sa.ForeignKeyConstraint(['loaded_by'], ['users.id']),
        sa.ForeignKeyConstraint(['reconciled_by'], ['users.id']),
        sa.UniqueConstraint('truck_id', 'load_date', name='uq_truck_loads_truck_date'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_truck_loads_truck_id', 'truck_loads', ['truck_id'])
    op.create_index('ix_truck_loads_date_status', 'truck_loads', ['load_date', 'status'])

    op.create_table(
        'truck_load_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('truck_load_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity_loaded', sa.Integer(), nullable=False),
        sa.Column('quantity_sold', sa.Integer(), nullable=False),
        sa.Column('quantity_returned', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['truck_load_id'], ['truck_loads.id']),
        sa.ForeignKeyConstraint(['batch_id'], ['batches.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.UniqueConstraint('truck_load_id', 'batch_id', name='uq_truck_load_items_load_batch'),
        sa.CheckConstraint('quantity_loaded > 0', name='ck_truck_load_items_loaded_pos'),
        sa.CheckConstraint('quantity_sold >= 0', name='ck_truck_load_items_sold_nonneg'),
        sa.CheckConstraint('quantity_returned >= 0', name='ck_truck_load_items_returned_nonneg'),
        sa.CheckConstraint('quantity_sold + quantity_returned <= quantity_loaded',
                           name='ck_truck_load_items_conservation'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_truck_load_items_truck_load_id', 'truck_load_items', ['truck_load_id'])
    op.create_index('ix_truck_load_items_batch_id', 'truck_load_items', ['batch_id'])
    op.create_index('ix_truck_load_items_product_id', 'truck_load_items', ['product_id'])

    # ============================================================================
    # Sales
    # ============================================================================
    op.create_table(
        'sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=False),
        sa.Column('truck_load_id', sa.Integer(), nullable=False),
        sa.Column('sold_by', sa.Integer(), nullable=True),
        sa.Column('sale_date', sa.Date(), nullable=False),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False),
        sa.Column('amount_paid_cents', sa.Integer(), nullable=False),
        sa.Column('payment_status', sa.String(length=16), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id']),
        sa.ForeignKeyConstraint(['truck_load_id'], ['truck_loads.id']),
        sa.ForeignKeyConstraint(['sold_by'], ['users.id']),
        sa.CheckConstraint('total_amount_cents >= 0', name='ck_sales_total_nonneg'),
        sa.CheckConstraint('amount_paid_cents >= 0', name='ck_sales_paid_nonneg'),
        sa.CheckConstraint('amount_paid_cents <= total_amount_cents', name='ck_sales_paid_le_total'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sales_shop_id', 'sales', ['shop_id'])
    op.create_index('ix_sales_truck_load_id', 'sales', ['truck_load_id'])
    op.create_index('ix_sales_load_date', 'sales', ['truck_load_id', 'sale_date'])

    op.create_table(
        'sale_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('truck_load_item_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.Column('commission_earned_cents', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['truck_load_item_id'], ['truck_load_items.id']),
        sa.ForeignKeyConstraint(['batch_id'], ['batches.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.CheckConstraint('quantity > 0', name='ck_sale_items_quantity_pos'),
        sa.CheckConstraint('unit_price_cents >= 0', name='ck_sale_items_price_nonneg'),
        sa.CheckConstraint('commission_earned_cents >= 0', name='ck_sale_items_commission_nonneg'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sale_items_sale_id', 'sale_items', ['sale_id'])
    op.create_index('ix_sale_items_truck_load_item_id', 'sale_items', ['truck_load_item_id'])
    op.create_index('ix_sale_items_batch_id', 'sale_items', ['batch_id'])
    op.create_index('ix_sale_items_product_id', 'sale_items', ['product_id'])

    # ============================================================================
    # Transport allowances
    # ============================================================================
    op.create_table(
        'transport_allowances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('allowance_date', sa.Date(), nullable=False),
        sa.Column('total_allowance_cents', sa.Integer(), nullable=False),
        sa.Column('allocated_amount_cents', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('finalized_by', sa.Integer(), nullable=True),
        sa.Column('finalized_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.ForeignKeyConstraint(['finalized_by'], ['users.id']),
        sa.UniqueConstraint('allowance_date'),
        sa.CheckConstraint('total_allowance_cents > 0', name='ck_transport_allowances_total_pos'),
        sa.CheckConstraint('allocated_amount_cents >= 0', name='ck_transport_allowances_allocated_nonneg'),
        sa.CheckConstraint('allocated_amount_cents <= total_allowance_cents',
                           name='ck_transport_allowances_allocated_le_total'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'truck_allowances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('allowance_id', sa.Integer(), nullable=False),
        sa.Column('truck_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('distance_covered', sa.Float(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['allowance_id'], ['transport_allowances.id']),
        sa.ForeignKeyConstraint(['truck_id'], ['trucks.id']),
        sa.UniqueConstraint('allowance_id', 'truck_id', name='uq_truck_allowances_pool_truck'),
        sa.CheckConstraint('amount_cents > 0', name='ck_truck_allowances_amount_pos'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_truck_allowances_allowance_id', 'truck_allowances', ['allowance_id'])
    op.create_index('ix_truck_allowances_truck_id', 'truck_allowances', ['truck_id'])

    # ============================================================================
    # Daily reconciliation
    # ============================================================================
    op.create_table(
        'daily_reconciliations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reconciliation_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('trucks_out', sa.Integer(), nullable=False),
        sa.Column('trucks_verified', sa.Integer(), nullable=False),
        sa.Column('total_items_loaded', sa.Integer(), nullable=False),
        sa.Column('total_items_sold', sa.Integer(), nullable=False),
        sa.Column('total_items_returned', sa.Integer(), nullable=False),
        sa.Column('total_items_discarded', sa.Integer(), nullable=False),
        sa.Column('total_sales_amount_cents', sa.Integer(), nullable=False),
        sa.Column('total_commission_earned_cents', sa.Integer(), nullable=False),
        sa.Column('total_allowance_allocated_cents', sa.Integer(), nullable=False),
        sa.Column('total_payments_collected_cents', sa.Integer(), nullable=False),
        sa.Column('total_pending_payments_cents', sa.Integer(), nullable=False),
        sa.Column('net_profit_cents', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('started_by', sa.Integer(), nullable=True),
        _timestamp('started_at'),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finalized_by', sa.Integer(), nullable=True),
        sa.Column('finalized_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['started_by'], ['users.id']),
        sa.ForeignKeyConstraint(['finalized_by'], ['users.id']),
        sa.UniqueConstraint('reconciliation_date'),
        sa.CheckConstraint('trucks_verified <= trucks_out', name='ck_daily_reconciliations_verified_le_out'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'reconciliation_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reconciliation_id', sa.Integer(), nullable=False),
        sa.Column('truck_id', sa.Integer(), nullable=False),
        sa.Column('truck_load_id', sa.Integer(), nullable=False),
        sa.Column('items_loaded', sa.Integer(), nullable=False),
        sa.Column('items_sold', sa.Integer(), nullable=False),
        sa.Column('items_returned', sa.Integer(), nullable=False),
        sa.Column('items_discarded', sa.Integer(), nullable=False),
        sa.Column('reported_returned', sa.Integer(), nullable=True),
        sa.Column('reported_discarded', sa.Integer(), nullable=True),
        sa.Column('reported_lines', sa.Text(), nullable=True),
        sa.Column('sales_amount_cents', sa.Integer(), nullable=False),
        sa.Column('commission_earned_cents', sa.Integer(), nullable=False),
        sa.Column('allowance_received_cents', sa.Integer(), nullable=False),
        sa.Column('payments_collected_cents', sa.Integer(), nullable=False),
        sa.Column('pending_payments_cents', sa.Integer(), nullable=False),
        sa.Column('is_verified', sa.Boolean(), nullable=False),
        sa.Column('has_discrepancy', sa.Boolean(), nullable=False),
        sa.Column('discrepancy_notes', sa.Text(), nullable=True),
        sa.Column('verified_by', sa.Integer(), nullable=True),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['reconciliation_id'], ['daily_reconciliations.id']),
        sa.ForeignKeyConstraint(['truck_id'], ['trucks.id']),
        sa.ForeignKeyConstraint(['truck_load_id'], ['truck_loads.id']),
        sa.ForeignKeyConstraint(['verified_by'], ['users.id']),
        sa.UniqueConstraint('reconciliation_id', 'truck_id', name='uq_reconciliation_items_recon_truck'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_reconciliation_items_reconciliation_id', 'reconciliation_items', ['reconciliation_id'])
    op.create_index('ix_reconciliation_items_truck_id', 'reconciliation_items', ['truck_id'])
    op.create_index('ix_reconciliation_items_truck_load_id', 'reconciliation_items', ['truck_load_id'])


def downgrade():
    op.drop_table('reconciliation_items')
    op.drop_table('daily_reconciliations')
    op.drop_table('truck_allowances')
    op.drop_table('transport_allowances')
    op.drop_table('sale_items')
    op.drop_table('sales')
    op.drop_table('truck_load_items')
    op.drop_table('truck_loads')
    op.drop_table('stock_movements')
    op.drop_table('batches')
    op.drop_table('deliveries')
    op.drop_table('shops')
    op.drop_table('trucks')
    op.drop_table('products')
    op.drop_table('users')

"""Initial batch ledger schema: stores, products, batches, thresholds, audit

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

This migration adds:
1. Store and Product master data
2. InventoryBatch (per-line lots with expiry, optimistic version_id)
3. ReorderThreshold (minimum level per inventory line)
4. BatchAuditEntry (append-only quantity mutation history)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. STORES / PRODUCTS
    # ==========================================================================
    op.create_table('stores',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stores', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stores_code'), ['code'], unique=True)

    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index('ix_products_name', ['name'], unique=False)

    # ==========================================================================
    # 2. INVENTORY BATCHES
    # ==========================================================================
    op.create_table('inventory_batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('batch_number', sa.String(length=64), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('cost_per_unit_cents', sa.Integer(), nullable=True),
        sa.Column('manufacturing_date', sa.Date(), nullable=True),
        sa.Column('expiry_date', sa.Date(), nullable=True),
        sa.Column('received_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'product_id', 'batch_number', name='uq_batches_line_number'),
        sa.CheckConstraint('quantity >= 0', name='ck_batches_quantity_non_negative'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('inventory_batches', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_inventory_batches_store_id'), ['store_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_inventory_batches_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_inventory_batches_expiry_date'), ['expiry_date'], unique=False)
        batch_op.create_index('ix_batches_line_expiry', ['store_id', 'product_id', 'expiry_date'], unique=False)

    # ==========================================================================
    # 3. REORDER THRESHOLDS
    # ==========================================================================
    op.create_table('reorder_thresholds',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('minimum_level', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'product_id', name='uq_reorder_thresholds_line'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('reorder_thresholds', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_reorder_thresholds_store_id'), ['store_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_reorder_thresholds_product_id'), ['product_id'], unique=False)

    # ==========================================================================
    # 4. BATCH AUDIT ENTRIES (append-only)
    # ==========================================================================
    op.create_table('batch_audit_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=16), nullable=False),
        sa.Column('quantity_before', sa.Integer(), nullable=False),
        sa.Column('quantity_after', sa.Integer(), nullable=False),
        sa.Column('details', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['batch_id'], ['inventory_batches.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('batch_id', 'sequence', name='uq_batch_audit_batch_sequence'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('batch_audit_entries', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_batch_audit_entries_batch_id'), ['batch_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_batch_audit_entries_user_id'), ['user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_batch_audit_entries_action'), ['action'], unique=False)
        batch_op.create_index('ix_batch_audit_details', ['details'], unique=False)


def downgrade():
    with op.batch_alter_table('batch_audit_entries', schema=None) as batch_op:
        batch_op.drop_index('ix_batch_audit_details')
        batch_op.drop_index(batch_op.f('ix_batch_audit_entries_action'))
        batch_op.drop_index(batch_op.f('ix_batch_audit_entries_user_id'))
        batch_op.drop_index(batch_op.f('ix_batch_audit_entries_batch_id'))
    op.drop_table('batch_audit_entries')

    with op.batch_alter_table('reorder_thresholds', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_reorder_thresholds_product_id'))
        batch_op.drop_index(batch_op.f('ix_reorder_thresholds_store_id'))
    op.drop_table('reorder_thresholds')

    with op.batch_alter_table('inventory_batches', schema=None) as batch_op:
        batch_op.drop_index('ix_batches_line_expiry')
        batch_op.drop_index(batch_op.f('ix_inventory_batches_expiry_date'))
        batch_op.drop_index(batch_op.f('ix_inventory_batches_product_id'))
        batch_op.drop_index(batch_op.f('ix_inventory_batches_store_id'))
    op.drop_table('inventory_batches')

    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.drop_index('ix_products_name')
    op.drop_table('products')

    with op.batch_alter_table('stores', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_stores_code'))
    op.drop_table('stores')

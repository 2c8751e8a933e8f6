"""PDV core schema: catalog, sales, stock journal, cash sessions

Revision ID: 20261019_pdv_core
Revises:
Create Date: 2026-10-19

This migration adds:
1. Stores, operators (users) and customers
2. Products with on-hand stock and the stock movement journal
3. Sales and sale lines, with per-store document sequences
4. Cash sessions (one OPEN per operator per store) and cash movements
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_pdv_core'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. STORES / USERS / CUSTOMERS
    # ==========================================================================
    op.create_table('stores',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('stores', schema=None) as batch_op:
        batch_op.create_index('ix_stores_code', ['code'], unique=True)

    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=True),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index('ix_users_store_id', ['store_id'], unique=False)
        batch_op.create_index('ix_users_username', ['username'], unique=True)

    op.create_table('customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('document', sa.String(length=32), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('customers', schema=None) as batch_op:
        batch_op.create_index('ix_customers_store_id', ['store_id'], unique=False)
        batch_op.create_index('ix_customers_document', ['document'], unique=False)
        batch_op.create_index('ix_customers_store_name', ['store_id', 'name'], unique=False)

    # ==========================================================================
    # 2. PRODUCTS
    # ==========================================================================
    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=True),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('min_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'code', name='uq_products_store_code'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index('ix_products_store_id', ['store_id'], unique=False)
        batch_op.create_index('ix_products_store_name', ['store_id', 'name'], unique=False)

    # ==========================================================================
    # 3. CASH SESSIONS
    # ==========================================================================
    op.create_table('cash_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('operator_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='OPEN'),
        sa.Column('opening_balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('closing_balance_cents', sa.Integer(), nullable=True),
        sa.Column('expected_balance_cents', sa.Integer(), nullable=True),
        sa.Column('variance_cents', sa.Integer(), nullable=True),
        sa.Column('opened_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['operator_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('cash_sessions', schema=None) as batch_op:
        batch_op.create_index('ix_cash_sessions_store_id', ['store_id'], unique=False)
        batch_op.create_index('ix_cash_sessions_operator_id', ['operator_id'], unique=False)
        batch_op.create_index('ix_cash_sessions_status', ['status'], unique=False)
        batch_op.create_index('ix_cash_sessions_opened_at', ['opened_at'], unique=False)

    # Partial index: at most one OPEN session per operator per store
    op.create_index(
        'uq_cash_sessions_one_open_per_operator',
        'cash_sessions',
        ['store_id', 'operator_id'],
        unique=True,
        sqlite_where=sa.text("status = 'OPEN'"),
        postgresql_where=sa.text("status = 'OPEN'"),
    )

    # ==========================================================================
    # 4. SALES / SALE LINES / DOCUMENT SEQUENCES
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('sale_number', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('operator_id', sa.Integer(), nullable=False),
        sa.Column('cash_session_id', sa.Integer(), nullable=False),
        sa.Column('gross_total_cents', sa.Integer(), nullable=False),
        sa.Column('discount_type', sa.String(length=16), nullable=True),
        sa.Column('discount_value', sa.Integer(), nullable=True),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('net_total_cents', sa.Integer(), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='COMPLETED'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by_user_id', sa.Integer(), nullable=True),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.ForeignKeyConstraint(['operator_id'], ['users.id']),
        sa.ForeignKeyConstraint(['cash_session_id'], ['cash_sessions.id']),
        sa.ForeignKeyConstraint(['cancelled_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'sale_number', name='uq_sales_store_number'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('sales', schema=None) as batch_op:
        batch_op.create_index('ix_sales_store_id', ['store_id'], unique=False)
        batch_op.create_index('ix_sales_customer_id', ['customer_id'], unique=False)
        batch_op.create_index('ix_sales_operator_id', ['operator_id'], unique=False)
        batch_op.create_index('ix_sales_cash_session_id', ['cash_session_id'], unique=False)
        batch_op.create_index('ix_sales_payment_method', ['payment_method'], unique=False)
        batch_op.create_index('ix_sales_status', ['status'], unique=False)
        batch_op.create_index('ix_sales_store_status_created', ['store_id', 'status', 'created_at'], unique=False)

    op.create_table('sale_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('sale_lines', schema=None) as batch_op:
        batch_op.create_index('ix_sale_lines_sale_id', ['sale_id'], unique=False)
        batch_op.create_index('ix_sale_lines_product_id', ['product_id'], unique=False)

    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'document_type', name='uq_doc_sequences_store_type'),
    )
    with op.batch_alter_table('document_sequences', schema=None) as batch_op:
        batch_op.create_index('ix_document_sequences_store_id', ['store_id'], unique=False)
        batch_op.create_index('ix_document_sequences_document_type', ['document_type'], unique=False)

    # ==========================================================================
    # 5. STOCK JOURNAL / CASH MOVEMENTS
    # ==========================================================================
    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=16), nullable=False),
        sa.Column('quantity_delta', sa.Integer(), nullable=False),
        sa.Column('stock_after', sa.Integer(), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('sale_line_id', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['sale_line_id'], ['sale_lines.id']),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_line_id', 'movement_type', name='uq_stock_movements_line_type'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('stock_movements', schema=None) as batch_op:
        batch_op.create_index('ix_stock_movements_store_id', ['store_id'], unique=False)
        batch_op.create_index('ix_stock_movements_product_id', ['product_id'], unique=False)
        batch_op.create_index('ix_stock_movements_movement_type', ['movement_type'], unique=False)
        batch_op.create_index('ix_stock_movements_sale_id', ['sale_id'], unique=False)
        batch_op.create_index('ix_stock_movements_occurred_at', ['occurred_at'], unique=False)
        batch_op.create_index('ix_stock_movements_product_occurred', ['product_id', 'occurred_at'], unique=False)

    op.create_table('cash_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('payment_method', sa.String(length=16), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['cash_sessions.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_id', 'kind', name='uq_cash_movements_sale_kind'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('cash_movements', schema=None) as batch_op:
        batch_op.create_index('ix_cash_movements_session_id', ['session_id'], unique=False)
        batch_op.create_index('ix_cash_movements_kind', ['kind'], unique=False)
        batch_op.create_index('ix_cash_movements_payment_method', ['payment_method'], unique=False)
        batch_op.create_index('ix_cash_movements_sale_id', ['sale_id'], unique=False)
        batch_op.create_index('ix_cash_movements_occurred_at', ['occurred_at'], unique=False)
        batch_op.create_index('ix_cash_movements_session_occurred', ['session_id', 'occurred_at'], unique=False)


def downgrade():
    op.drop_table('cash_movements')
    op.drop_table('stock_movements')
    op.drop_table('document_sequences')
    op.drop_table('sale_lines')
    op.drop_table('sales')
    op.drop_index('uq_cash_sessions_one_open_per_operator', table_name='cash_sessions')
    op.drop_table('cash_sessions')
    op.drop_table('products')
    op.drop_table('customers')
    op.drop_table('users')
    op.drop_table('stores')

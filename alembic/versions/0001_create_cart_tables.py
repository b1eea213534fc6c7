"""create products, carts and cart_lines tables

Revision ID: 0001_create_cart_tables
Revises: 
Create Date: 2026-10-19 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

revision = '0001_create_cart_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.CheckConstraint('price >= 0', name='ck_products_price_nonneg'),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_nonneg'),
    )
    op.create_index(op.f('ix_products_id'), 'products', ['id'])

    op.create_table(
        'carts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('state', sa.String(length=16), nullable=False, server_default='Active'),
    )
    op.create_index(op.f('ix_carts_id'), 'carts', ['id'])
    op.create_index('ix_carts_user', 'carts', ['user_id'])
    # one active cart per user
    op.create_index(
        'uq_carts_user_active', 'carts', ['user_id'], unique=True,
        postgresql_where=sa.text("state = 'Active'"),
        sqlite_where=sa.text("state = 'Active'"),
    )

    op.create_table(
        'cart_lines',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('cart_id', sa.Integer(), sa.ForeignKey('carts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.UniqueConstraint('cart_id', 'product_id', name='uq_cart_lines_cart_product'),
        sa.CheckConstraint('quantity > 0', name='ck_cart_lines_quantity_pos'),
    )
    op.create_index(op.f('ix_cart_lines_id'), 'cart_lines', ['id'])


def downgrade():
    op.drop_index(op.f('ix_cart_lines_id'), table_name='cart_lines')
    op.drop_table('cart_lines')
    op.drop_index('uq_carts_user_active', table_name='carts')
    op.drop_index('ix_carts_user', table_name='carts')
    op.drop_index(op.f('ix_carts_id'), table_name='carts')
    op.drop_table('carts')
    op.drop_index(op.f('ix_products_id'), table_name='products')
    op.drop_table('products')

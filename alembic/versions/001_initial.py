"""Initial migration

Revision ID: 001_initial
Revises:
Create Date: 2026-01-12 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Products table
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('merchant', sa.String(length=64), nullable=False),
        sa.Column('original_url', sa.Text(), nullable=False),
        sa.Column('normalized_url', sa.Text(), nullable=False),
        sa.Column('product_hash', sa.String(length=64), nullable=False),
        sa.Column('title', sa.Text(), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_hash')
    )
    op.create_index('ix_products_merchant', 'products', ['merchant'])

    # Price observations table
    op.create_table(
        'price_observations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('source', sa.String(length=32), nullable=False),
        sa.Column('observed_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.CheckConstraint('price >= 0', name='ck_price_observations_price_non_negative')
    )
    op.create_index(
        'ix_price_observations_product_observed',
        'price_observations',
        ['product_id', 'observed_at'],
    )

    # Watchlist items table
    op.create_table(
        'watchlist_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('user_ref', sa.String(length=128), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE')
    )
    op.create_index('ix_watchlist_items_product_id', 'watchlist_items', ['product_id'])


def downgrade() -> None:
    op.drop_index('ix_watchlist_items_product_id', table_name='watchlist_items')
    op.drop_table('watchlist_items')
    op.drop_index('ix_price_observations_product_observed', table_name='price_observations')
    op.drop_table('price_observations')
    op.drop_index('ix_products_merchant', table_name='products')
    op.drop_table('products')

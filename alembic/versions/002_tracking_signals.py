"""Add tracking state and product views

Revision ID: 002_tracking_signals
Revises: 001_initial
Create Date: 2026-02-03 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '002_tracking_signals'
down_revision = '001_initial'
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Tracking state on products
    op.add_column(
        'products',
        sa.Column('tracking_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.add_column('products', sa.Column('last_tracked_at', sa.DateTime(), nullable=True))
    op.create_index('ix_products_last_tracked_at', 'products', ['last_tracked_at'])

    # Product views table
    op.create_table(
        'product_views',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('anonymous_user_id', sa.String(length=128), nullable=True),
        sa.Column('viewed_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE')
    )
    op.create_index(
        'ix_product_views_product_viewed',
        'product_views',
        ['product_id', 'viewed_at'],
    )


def downgrade() -> None:
    op.drop_index('ix_product_views_product_viewed', table_name='product_views')
    op.drop_table('product_views')
    op.drop_index('ix_products_last_tracked_at', table_name='products')
    op.drop_column('products', 'last_tracked_at')
    op.drop_column('products', 'tracking_enabled')

"""Initial schema: users, items, transactions and login sessions

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa


revision = 'a1b2c3d4e5f6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'user',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('username', sa.String(length=50), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('avatar', sa.String(length=500), nullable=True),
        sa.Column('cart_json', sa.Text(), nullable=True),
        sa.Column('likes_json', sa.Text(), nullable=True),
        sa.Column('purchase_history_json', sa.Text(), nullable=True),
        sa.Column('date_joined', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username')
    )
    op.create_table(
        'item',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('title', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Float(), nullable=True),
        sa.Column('type', sa.String(length=20), nullable=True),
        sa.Column('category', sa.String(length=20), nullable=True),
        sa.Column('image_urls_json', sa.Text(), nullable=True),
        sa.Column('seller_id', sa.String(length=32), nullable=False),
        sa.Column('seller_name', sa.String(length=50), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('likes', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=True),
        sa.ForeignKeyConstraint(['seller_id'], ['user.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_item_seller_id', 'item', ['seller_id'])
    op.create_index('ix_item_status', 'item', ['status'])
    op.create_table(
        'transaction',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('item_id', sa.String(length=32), nullable=False),
        sa.Column('seller_id', sa.String(length=32), nullable=False),
        sa.Column('buyer_id', sa.String(length=32), nullable=False),
        sa.Column('buyer_name', sa.String(length=50), nullable=True),
        sa.Column('seller_name', sa.String(length=50), nullable=True),
        sa.Column('item_snapshot_json', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=True),
        sa.Column('transaction_code', sa.String(length=6), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('buyer_deleted', sa.Boolean(), nullable=True),
        sa.Column('seller_deleted', sa.Boolean(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_transaction_item_id', 'transaction', ['item_id'])
    op.create_index('ix_transaction_seller_id', 'transaction', ['seller_id'])
    op.create_index('ix_transaction_buyer_id', 'transaction', ['buyer_id'])
    op.create_index('ix_transaction_status', 'transaction', ['status'])
    op.create_table(
        'user_session',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('token', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['user.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_user_session_token', 'user_session', ['token'], unique=True)
    op.create_index('ix_user_session_user_id', 'user_session', ['user_id'])


def downgrade():
    op.drop_table('user_session')
    op.drop_table('transaction')
    op.drop_table('item')
    op.drop_table('user')

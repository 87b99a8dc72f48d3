"""marketplace ledger

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create profiles, images, transactions and download_tokens."""

    # ========================================================================
    # Profiles
    # ========================================================================
    op.create_table(
        'profiles',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('bio', sa.Text(), nullable=False, server_default=''),
        sa.Column('balance_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.CheckConstraint('balance_minor >= 0', name='ck_profile_balance_non_negative'),
    )
    op.create_index('idx_profiles_display_name', 'profiles', ['display_name'])

    # ========================================================================
    # Images
    # ========================================================================
    op.create_table(
        'images',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('owner_id', sa.Uuid(), sa.ForeignKey('profiles.id'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('category', sa.String(100), nullable=False, server_default='general'),
        sa.Column('asset_url', sa.String(2048), nullable=False),
        sa.Column('thumbnail_url', sa.String(2048), nullable=False),
        sa.Column('price_minor', sa.BigInteger(), nullable=False),
        sa.Column('downloads', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.CheckConstraint('price_minor > 0', name='ck_image_price_positive'),
        sa.CheckConstraint('downloads >= 0', name='ck_image_downloads_non_negative'),
    )
    op.create_index('ix_images_owner_id', 'images', ['owner_id'])
    op.create_index('idx_images_category', 'images', ['category'])
    op.create_index('idx_images_created_at', 'images', ['created_at'])

    # ========================================================================
    # Transactions (immutable sales ledger)
    # ========================================================================
    op.create_table(
        'transactions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('buyer_id', sa.Uuid(), sa.ForeignKey('profiles.id'), nullable=False),
        sa.Column('seller_id', sa.Uuid(), sa.ForeignKey('profiles.id'), nullable=False),
        sa.Column('image_id', sa.Uuid(), sa.ForeignKey('images.id'), nullable=False),
        sa.Column('amount_minor', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('payment_ref', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.CheckConstraint('amount_minor > 0', name='ck_transaction_amount_positive'),
        sa.CheckConstraint(
            "status IN ('pending', 'completed', 'failed')", name='ck_transaction_status'
        ),
        sa.UniqueConstraint('payment_ref', name='uq_transactions_payment_ref'),
    )
    op.create_index('ix_transactions_buyer_id', 'transactions', ['buyer_id'])
    op.create_index('ix_transactions_seller_id', 'transactions', ['seller_id'])
    op.create_index('idx_transactions_image_id', 'transactions', ['image_id'])
    op.create_index('idx_transactions_created_at', 'transactions', ['created_at'])

    # ========================================================================
    # Download tokens (one per transaction, claimed at most once)
    # ========================================================================
    op.create_table(
        'download_tokens',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('transaction_id', sa.Uuid(), sa.ForeignKey('transactions.id'), nullable=False),
        sa.Column('buyer_id', sa.Uuid(), sa.ForeignKey('profiles.id'), nullable=False),
        sa.Column('image_id', sa.Uuid(), sa.ForeignKey('images.id'), nullable=False),
        sa.Column('token', sa.String(128), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('used', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.UniqueConstraint('transaction_id', name='uq_download_tokens_transaction_id'),
        sa.UniqueConstraint('token', name='uq_download_tokens_token'),
    )
    op.create_index('ix_download_tokens_buyer_id', 'download_tokens', ['buyer_id'])
    op.create_index('idx_download_tokens_expires_at', 'download_tokens', ['expires_at'])


def downgrade() -> None:
    """Drop the marketplace ledger."""
    op.drop_table('download_tokens')
    op.drop_table('transactions')
    op.drop_table('images')
    op.drop_table('profiles')

"""create social accounts and content posts

Revision ID: 0001_social_accounts
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_social_accounts'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'social_accounts',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('owner_id', sa.String(255), nullable=False),
        sa.Column(
            'platform',
            sa.Enum('instagram', 'tiktok', 'youtube', 'twitter', name='platform'),
            nullable=False,
        ),
        sa.Column('external_user_id', sa.String(255), nullable=False),
        sa.Column('external_handle', sa.String(255), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('profile_url', sa.String(1000), nullable=True),
        sa.Column('avatar_url', sa.String(1000), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('deactivation_reason', sa.String(500), nullable=True),
        sa.Column('deactivated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('followers_count', sa.Integer(), nullable=True),
        sa.Column('following_count', sa.Integer(), nullable=True),
        sa.Column('content_count', sa.Integer(), nullable=True),
        sa.Column('engagement_rate', sa.Float(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_social_accounts_owner_id', 'social_accounts', ['owner_id'])
    op.create_index(
        'uix_social_accounts_owner_platform',
        'social_accounts',
        ['owner_id', 'platform'],
        unique=True,
        postgresql_where=sa.text('deleted_at IS NULL'),
    )
    op.create_index(
        'uix_social_accounts_platform_external',
        'social_accounts',
        ['platform', 'external_user_id', 'external_handle'],
        unique=True,
        postgresql_where=sa.text('deleted_at IS NULL'),
    )

    op.create_table(
        'content_posts',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('account_id', sa.String(36), nullable=False),
        sa.Column('external_post_id', sa.String(255), nullable=False),
        sa.Column('caption', sa.Text(), nullable=True),
        sa.Column('media_type', sa.String(50), nullable=True),
        sa.Column('media_url', sa.String(1000), nullable=True),
        sa.Column('thumbnail_url', sa.String(1000), nullable=True),
        sa.Column('duration_seconds', sa.Integer(), nullable=True),
        sa.Column('posted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('likes_count', sa.Integer(), nullable=True),
        sa.Column('comments_count', sa.Integer(), nullable=True),
        sa.Column('shares_count', sa.Integer(), nullable=True),
        sa.Column('views_count', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['social_accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id', 'external_post_id', name='uix_content_posts_account_external'),
    )
    op.create_index('ix_content_posts_account_id', 'content_posts', ['account_id'])


def downgrade() -> None:
    op.drop_index('ix_content_posts_account_id', table_name='content_posts')
    op.drop_table('content_posts')
    op.drop_index('uix_social_accounts_platform_external', table_name='social_accounts')
    op.drop_index('uix_social_accounts_owner_platform', table_name='social_accounts')
    op.drop_index('ix_social_accounts_owner_id', table_name='social_accounts')
    op.drop_table('social_accounts')
    sa.Enum(name='platform').drop(op.get_bind(), checkfirst=True)

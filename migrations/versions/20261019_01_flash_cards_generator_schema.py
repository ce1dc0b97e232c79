"""flash cards generator schema: users, generation sessions, flash cards, daily usage

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261019_01'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


subscription_tier = sa.Enum('free', 'educator', 'premium', name='subscription_tier')
card_type = sa.Enum('single_word', 'category', name='card_type')
session_status = sa.Enum('pending', 'processing', 'completed', 'failed', name='session_status')
flash_card_status = sa.Enum('generating', 'preview', 'approved', 'downloaded', name='flash_card_status')


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('subscription_tier', subscription_tier, nullable=False, server_default='free'),
        sa.Column('preferences', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'generation_sessions',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('input_prompt', sa.String(length=200), nullable=False),
        sa.Column('card_type', card_type, nullable=False),
        sa.Column('generation_params', sa.JSON(), nullable=False),
        sa.Column('status', session_status, nullable=False),
        sa.Column('error_message', sa.String(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ai_costs', sa.JSON(), nullable=True),
        sa.Column('produced_card_ids', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_generation_sessions_user_created', 'generation_sessions', ['user_id', 'created_at']
    )

    op.create_table(
        'flash_cards',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('session_id', sa.UUID(), nullable=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('card_type', card_type, nullable=False),
        sa.Column('content', sa.JSON(), nullable=False),
        sa.Column('generation_params', sa.JSON(), nullable=False),
        sa.Column('status', flash_card_status, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['session_id'], ['generation_sessions.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_flash_cards_user_id', 'flash_cards', ['user_id'])

    op.create_table(
        'daily_usage',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('usage_date', sa.Date(), nullable=False),
        sa.Column('generations_count', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'usage_date', name='uq_daily_usage_user_date'),
    )


def downgrade() -> None:
    op.drop_table('daily_usage')
    op.drop_index('ix_flash_cards_user_id', table_name='flash_cards')
    op.drop_table('flash_cards')
    op.drop_index('ix_generation_sessions_user_created', table_name='generation_sessions')
    op.drop_table('generation_sessions')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')

    bind = op.get_bind()
    for enum in (flash_card_status, session_status, card_type, subscription_tier):
        enum.drop(bind, checkfirst=True)

"""initial

Revision ID: 0001
Revises: 
Create Date: 2026-10-17 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = '0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('users',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('username', sa.String(20), nullable=False),
        sa.Column('display_name', sa.String(100), nullable=True),
        sa.Column('bio', sa.Text(), nullable=True),
        sa.Column('privacy_level', sa.String(16), nullable=False, server_default='public'),
        sa.Column('privacy_settings', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('gaming_preferences', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("privacy_level IN ('public', 'friends', 'private')", name='ck_users_privacy_level'),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_username', 'users', ['username'], unique=True)

    op.create_table('friendships',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('requester_id', sa.Integer, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('recipient_id', sa.Integer, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_low', sa.Integer, nullable=False),
        sa.Column('user_high', sa.Integer, nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('user_low', 'user_high', name='uix_friendship_pair'),
        sa.CheckConstraint('requester_id != recipient_id', name='ck_friendship_not_self'),
        sa.CheckConstraint("status IN ('pending', 'accepted', 'declined', 'blocked')", name='ck_friendship_status'),
    )
    op.create_index('ix_friendships_requester_id', 'friendships', ['requester_id'])
    op.create_index('ix_friendships_recipient_id', 'friendships', ['recipient_id'])
    op.create_index('ix_friendships_created_at', 'friendships', ['created_at'])
    op.create_index('ix_friendships_accepted_at', 'friendships', ['accepted_at'])

    op.create_table('follows',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('follower_id', sa.Integer, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('followee_id', sa.Integer, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('follower_id', 'followee_id', name='uix_follow_pair'),
        sa.CheckConstraint('follower_id != followee_id', name='ck_follow_not_self'),
    )
    op.create_index('ix_follows_follower_id', 'follows', ['follower_id'])
    op.create_index('ix_follows_followee_id', 'follows', ['followee_id'])
    op.create_index('ix_follows_created_at', 'follows', ['created_at'])

    op.create_table('blocks',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('blocker_id', sa.Integer, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('blocked_id', sa.Integer, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('blocker_id', 'blocked_id', name='uix_block_pair'),
        sa.CheckConstraint('blocker_id != blocked_id', name='ck_block_not_self'),
    )
    op.create_index('ix_blocks_blocker_id', 'blocks', ['blocker_id'])
    op.create_index('ix_blocks_blocked_id', 'blocks', ['blocked_id'])
    op.create_index('ix_blocks_created_at', 'blocks', ['created_at'])


def downgrade():
    op.drop_table('blocks')
    op.drop_table('follows')
    op.drop_table('friendships')
    op.drop_table('users')

"""Connection engine: accounts, profiles, memberships, connections, ledger and outbox.

Revision ID: 0001_connections
Revises:
Create Date: 2026-10-18

Creates:
- accounts, profiles, memberships (read model mirrored from the account/billing services)
- connections (status + versioned metadata, revision for compare-and-set)
- connection_unlocks (free-connection quota ledger)
- connection_notifications (event outbox)
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0001_connections'
down_revision = None
branch_labels = None
depends_on = None

JSON_DOCUMENT = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), 'postgresql')


def upgrade() -> None:
    # ==========================================================================
    # accounts / profiles / memberships
    # ==========================================================================
    op.create_table(
        'accounts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('active_profile_id', sa.Uuid(), nullable=True),
        sa.Column('token_version', sa.Integer(), server_default=sa.text('1'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'profiles',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=True),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('website', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_profiles_account_id', 'profiles', ['account_id'])

    op.create_table(
        'memberships',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('plan', sa.String(20), server_default='free', nullable=False),
        sa.Column('status', sa.String(20), server_default='free', nullable=False),
        sa.Column('billing_cycle', sa.String(20), nullable=True),
        sa.Column('trial_ends_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('free_connections_used', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id'),
    )

    # ==========================================================================
    # connections
    # ==========================================================================
    op.create_table(
        'connections',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('from_profile_id', sa.Uuid(), nullable=False),
        sa.Column('to_profile_id', sa.Uuid(), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('message', JSON_DOCUMENT, nullable=True),
        sa.Column('metadata', JSON_DOCUMENT, nullable=False),
        sa.Column('revision', sa.Integer(), server_default=sa.text('1'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['from_profile_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['to_profile_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_connections_from_profile', 'connections', ['from_profile_id', 'updated_at'])
    op.create_index('ix_connections_to_profile', 'connections', ['to_profile_id', 'updated_at'])
    op.create_index(
        'ix_connections_pair_status',
        'connections',
        ['from_profile_id', 'to_profile_id', 'type', 'status'],
    )

    # ==========================================================================
    # connection_unlocks / connection_notifications
    # ==========================================================================
    op.create_table(
        'connection_unlocks',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('connection_id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['connection_id'], ['connections.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id', 'connection_id', name='uq_connection_unlock'),
    )

    op.create_table(
        'connection_notifications',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('connection_id', sa.Uuid(), nullable=False),
        sa.Column('recipient_profile_id', sa.Uuid(), nullable=False),
        sa.Column('actor_profile_id', sa.Uuid(), nullable=False),
        sa.Column('event', sa.String(50), nullable=False),
        sa.Column('body', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['connection_id'], ['connections.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['recipient_profile_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['actor_profile_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_connection_notifications_recipient',
        'connection_notifications',
        ['recipient_profile_id', 'created_at'],
    )
    op.create_index(
        'ix_connection_notifications_undelivered',
        'connection_notifications',
        ['delivered_at'],
    )


def downgrade() -> None:
    op.drop_table('connection_notifications')
    op.drop_table('connection_unlocks')
    op.drop_table('connections')
    op.drop_table('memberships')
    op.drop_table('profiles')
    op.drop_table('accounts')

"""Baseline practice schema

Revision ID: 3a1f9c2d7b10
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3a1f9c2d7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
IdType = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', IdType, primary_key=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('password_hash', sa.Text(), nullable=True),
        sa.Column('role', sa.String(), nullable=False, server_default='therapist'),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'clients',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('user_id', IdType, sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('metadata', JSONType, nullable=True),
        sa.Column('relationships', JSONType, nullable=True),
        sa.Column('archived', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('archived_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('new_client_form_signed', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index('idx_clients_user', 'clients', ['user_id'])
    op.create_index('idx_clients_email', 'clients', ['email'])

    op.create_table(
        'sessions',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('user_id', IdType, sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('client_id', sa.String(64), sa.ForeignKey('clients.id', ondelete='SET NULL'), nullable=True),
        sa.Column('date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('duration', sa.Integer(), nullable=True),
        sa.Column('type', sa.String(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('metadata', JSONType, nullable=True),
        *_timestamps(),
    )
    op.create_index('idx_sessions_date', 'sessions', ['date'])
    op.create_index('idx_sessions_client', 'sessions', ['client_id'])
    op.create_index('idx_sessions_user', 'sessions', ['user_id'])

    op.create_table(
        'session_notes',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('user_id', IdType, sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('client_id', sa.String(64), sa.ForeignKey('clients.id', ondelete='SET NULL'), nullable=True),
        sa.Column('session_id', sa.String(64), sa.ForeignKey('sessions.id', ondelete='SET NULL'), nullable=True),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('transcript', sa.Text(), nullable=True),
        sa.Column('audio_url', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('idx_session_notes_client', 'session_notes', ['client_id'])

    op.create_table(
        'recordings',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('user_id', IdType, sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('client_id', sa.String(64), sa.ForeignKey('clients.id', ondelete='SET NULL'), nullable=True),
        sa.Column('session_id', sa.String(64), sa.ForeignKey('sessions.id', ondelete='SET NULL'), nullable=True),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('audio_url', sa.Text(), nullable=True),
        sa.Column('transcript', sa.Text(), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=True),
        sa.Column('recording_status', sa.String(), nullable=True),
        sa.Column('transcript_status', sa.String(), nullable=True),
        sa.Column('allocation_status', sa.String(), nullable=True),
        sa.Column('flagged', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('idx_recordings_client', 'recordings', ['client_id'])
    op.create_index('idx_recordings_user', 'recordings', ['user_id'])

    op.create_table(
        'settings',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('config', JSONType, nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'admin_reminders',
        sa.Column('id', sa.String(160), primary_key=True),
        sa.Column('user_id', IdType, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=True),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('client_id', sa.String(64), nullable=True),
        sa.Column('session_id', sa.String(64), nullable=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_sent_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('idx_admin_reminders_user', 'admin_reminders', ['user_id', 'is_active'])

    op.create_table(
        'email_history',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('user_id', IdType, sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('client_id', sa.String(64), nullable=True),
        sa.Column('session_id', sa.String(64), nullable=True),
        sa.Column('to_email', sa.String(), nullable=False),
        sa.Column('subject', sa.String(), nullable=True),
        sa.Column('kind', sa.String(), nullable=False, server_default='reminder'),
        sa.Column('status', sa.String(), nullable=False, server_default='sent'),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('idx_email_history_user_time', 'email_history', ['user_id', 'sent_at'])


def downgrade() -> None:
    op.drop_table('email_history')
    op.drop_table('admin_reminders')
    op.drop_table('settings')
    op.drop_table('recordings')
    op.drop_table('session_notes')
    op.drop_table('sessions')
    op.drop_table('clients')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_index('ix_users_id', table_name='users')
    op.drop_table('users')

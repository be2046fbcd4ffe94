"""Initial tables: users, slots, swap_requests

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 12:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = '0001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_PENDING_ONLY = sa.text("status = 'PENDING'")


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=64), primary_key=True, comment="Internal User ID"),
        sa.Column('name', sa.String(length=128), nullable=True, comment="User display name"),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_users_id', 'users', ['id'])

    op.create_table(
        'slots',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('owner_id', sa.String(length=64), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_slots_owner_id', 'slots', ['owner_id'])
    op.create_index('ix_slots_status_start_time', 'slots', ['status', 'start_time'])

    op.create_table(
        'swap_requests',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('requester_id', sa.String(length=64), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('responder_id', sa.String(length=64), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        # Plain references: requests outlive deleted slots
        sa.Column('my_slot_id', sa.String(length=36), nullable=False),
        sa.Column('their_slot_id', sa.String(length=36), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_swap_requests_requester_id', 'swap_requests', ['requester_id'])
    op.create_index('ix_swap_requests_responder_id', 'swap_requests', ['responder_id'])
    op.create_index('ix_swap_requests_my_slot_id', 'swap_requests', ['my_slot_id'])
    op.create_index('ix_swap_requests_their_slot_id', 'swap_requests', ['their_slot_id'])
    op.create_index('ix_swap_requests_status', 'swap_requests', ['status'])
    op.create_index('ix_swap_requests_created_at', 'swap_requests', ['created_at'])
    op.create_index(
        'uq_swap_requests_pending_my_slot', 'swap_requests', ['my_slot_id'],
        unique=True, postgresql_where=_PENDING_ONLY, sqlite_where=_PENDING_ONLY,
    )
    op.create_index(
        'uq_swap_requests_pending_their_slot', 'swap_requests', ['their_slot_id'],
        unique=True, postgresql_where=_PENDING_ONLY, sqlite_where=_PENDING_ONLY,
    )


def downgrade() -> None:
    op.drop_index('uq_swap_requests_pending_their_slot', table_name='swap_requests')
    op.drop_index('uq_swap_requests_pending_my_slot', table_name='swap_requests')
    op.drop_index('ix_swap_requests_created_at', table_name='swap_requests')
    op.drop_index('ix_swap_requests_status', table_name='swap_requests')
    op.drop_index('ix_swap_requests_their_slot_id', table_name='swap_requests')
    op.drop_index('ix_swap_requests_my_slot_id', table_name='swap_requests')
    op.drop_index('ix_swap_requests_responder_id', table_name='swap_requests')
    op.drop_index('ix_swap_requests_requester_id', table_name='swap_requests')
    op.drop_table('swap_requests')
    op.drop_index('ix_slots_status_start_time', table_name='slots')
    op.drop_index('ix_slots_owner_id', table_name='slots')
    op.drop_table('slots')
    op.drop_index('ix_users_id', table_name='users')
    op.drop_table('users')

"""create scheduling tables

Revision ID: 3f9a1c7d2b10
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9a1c7d2b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users, clients, packages, rules, appointments, financial entries and sources."""

    # 1. users
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
    )

    # 2. service_packages
    op.create_table(
        'service_packages',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('account_id', sa.Integer(), nullable=False, index=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('price', sa.Numeric(precision=20, scale=2), nullable=True),
    )

    # 3. clients
    op.create_table(
        'clients',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('account_id', sa.Integer(), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('package_id', sa.Integer(), nullable=True),
        sa.Column('is_recurring', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
    )

    # 4. recurring_rules
    op.create_table(
        'recurring_rules',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('account_id', sa.Integer(), nullable=False, index=True),
        sa.Column('client_id', sa.Integer(), nullable=False, index=True),
        sa.Column('title', sa.String(255), nullable=True),
        sa.Column('weekdays', sa.String(32), nullable=False),
        sa.Column('time_local', sa.Time(), nullable=False),
        sa.Column('timezone', sa.String(64), nullable=False),
        sa.Column('interval_weeks', sa.SmallInteger(), nullable=False, server_default='1'),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('occurrence_cap', sa.Integer(), nullable=True),
        sa.Column('amount', sa.Numeric(precision=20, scale=2), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('interval_weeks >= 1', name='ck_recurring_rule_interval'),
        sa.CheckConstraint('end_date IS NULL OR end_date >= start_date', name='ck_recurring_rule_dates'),
    )
    op.create_index('ix_recurring_rule_account_active', 'recurring_rules', ['account_id', 'active'])

    # 5. appointments: (recurring_rule_id, occurrence_date) is the materialization key
    op.create_table(
        'appointments',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('account_id', sa.Integer(), nullable=False, index=True),
        sa.Column('client_id', sa.Integer(), nullable=True),
        sa.Column('client_name', sa.String(255), nullable=True),
        sa.Column('service', sa.String(255), nullable=True),
        sa.Column('start_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('end_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('occurrence_date', sa.Date(), nullable=False),
        sa.Column('time_local', sa.Time(), nullable=False),
        sa.Column('timezone', sa.String(64), nullable=False),
        sa.Column('recurring_rule_id', sa.Integer(), nullable=True, index=True),
        sa.Column('amount', sa.Numeric(precision=20, scale=2), nullable=True),
        sa.Column('payment_method', sa.String(32), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(16), nullable=False, server_default='scheduled'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.UniqueConstraint('recurring_rule_id', 'occurrence_date', name='uq_appointment_rule_occurrence'),
    )
    op.create_index('ix_appointment_account_start', 'appointments', ['account_id', 'start_at'])
    op.create_index('ix_appointment_status_end', 'appointments', ['status', 'end_at'])

    # 6. financial_entries
    op.create_table(
        'financial_entries',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('account_id', sa.Integer(), nullable=False, index=True),
        sa.Column('appointment_id', sa.Integer(), nullable=True, index=True),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=20, scale=2), nullable=True),
        sa.Column('status', sa.String(16), nullable=False, server_default='expected'),
        sa.Column('kind', sa.String(16), nullable=False, server_default='INCOME'),
        sa.Column('note', sa.String(255), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
    )
    op.create_index('ix_fin_entry_account_due', 'financial_entries', ['account_id', 'due_date', 'status'])

    # 7. financial_sources
    op.create_table(
        'financial_sources',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('account_id', sa.Integer(), nullable=False, index=True),
        sa.Column('kind', sa.String(16), nullable=False),
        sa.Column('description', sa.String(200), nullable=False),
        sa.Column('amount', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('source_type', sa.String(16), nullable=False),
        sa.Column('frequency', sa.String(16), nullable=True),
        sa.Column('day', sa.SmallInteger(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
    )
    op.create_index('ix_fin_source_account_active', 'financial_sources', ['account_id', 'active'])


def downgrade() -> None:
    """Drop all scheduling tables."""
    op.drop_table('financial_sources')
    op.drop_table('financial_entries')
    op.drop_table('appointments')
    op.drop_table('recurring_rules')
    op.drop_table('clients')
    op.drop_table('service_packages')
    op.drop_table('users')

"""create self_scheduling_appointments table

Revision ID: 002
Revises: 001
Create Date: 2026-10-19 00:02:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '002'
down_revision = '001'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'self_scheduling_appointments',
        sa.Column('id', sa.BigInteger().with_variant(sa.Integer(), 'sqlite'), autoincrement=True, nullable=False),
        sa.Column('calendar_id', sa.Integer(), nullable=False),
        sa.Column('appointment_date', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('custom_data', sa.Text(), nullable=True),
        sa.Column('cpf_rf', sa.String(length=20), nullable=True),
        sa.Column('cpf_rf_encrypted', sa.Text(), nullable=True),
        sa.Column('cpf_rf_hash', sa.String(length=64), nullable=True),
        sa.Column('cpf_encrypted', sa.Text(), nullable=True),
        sa.Column('cpf_hash', sa.String(length=64), nullable=True),
        sa.Column('rf_encrypted', sa.Text(), nullable=True),
        sa.Column('rf_hash', sa.String(length=64), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        op.f('ix_self_scheduling_appointments_calendar_id'),
        'self_scheduling_appointments',
        ['calendar_id'],
    )
    op.create_index(
        op.f('ix_self_scheduling_appointments_cpf_rf_hash'),
        'self_scheduling_appointments',
        ['cpf_rf_hash'],
    )


def downgrade() -> None:
    op.drop_index(
        op.f('ix_self_scheduling_appointments_cpf_rf_hash'),
        table_name='self_scheduling_appointments',
    )
    op.drop_index(
        op.f('ix_self_scheduling_appointments_calendar_id'),
        table_name='self_scheduling_appointments',
    )
    op.drop_table('self_scheduling_appointments')

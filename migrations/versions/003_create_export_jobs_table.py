"""create export_jobs table

Revision ID: 003
Revises: 002
Create Date: 2026-10-19 00:03:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '003'
down_revision = '002'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'export_jobs',
        sa.Column('job_id', sa.String(length=64), nullable=False),
        sa.Column('owner', sa.Integer(), nullable=False),
        sa.Column('state', sa.JSON(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('job_id')
    )
    op.create_index(op.f('ix_export_jobs_owner'), 'export_jobs', ['owner'])
    op.create_index(op.f('ix_export_jobs_expires_at'), 'export_jobs', ['expires_at'])


def downgrade() -> None:
    op.drop_index(op.f('ix_export_jobs_expires_at'), table_name='export_jobs')
    op.drop_index(op.f('ix_export_jobs_owner'), table_name='export_jobs')
    op.drop_table('export_jobs')

"""create submissions table

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:01:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'submissions',
        sa.Column('id', sa.BigInteger().with_variant(sa.Integer(), 'sqlite'), autoincrement=True, nullable=False),
        sa.Column('form_id', sa.Integer(), nullable=False),
        sa.Column('submission_date', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='publish'),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('data', sa.Text(), nullable=True),
        sa.Column('data_encrypted', sa.Text(), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('email_encrypted', sa.Text(), nullable=True),
        sa.Column('email_hash', sa.String(length=64), nullable=True),
        sa.Column('user_ip', sa.String(length=100), nullable=True),
        sa.Column('user_ip_encrypted', sa.Text(), nullable=True),
        sa.Column('cpf_rf', sa.String(length=20), nullable=True),
        sa.Column('cpf_rf_encrypted', sa.Text(), nullable=True),
        sa.Column('cpf_rf_hash', sa.String(length=64), nullable=True),
        sa.Column('cpf_encrypted', sa.Text(), nullable=True),
        sa.Column('cpf_hash', sa.String(length=64), nullable=True),
        sa.Column('rf_encrypted', sa.Text(), nullable=True),
        sa.Column('rf_hash', sa.String(length=64), nullable=True),
        sa.Column('auth_code', sa.String(length=20), nullable=True),
        sa.Column('magic_token', sa.String(length=32), nullable=True),
        sa.Column('consent_given', sa.Boolean(), nullable=True),
        sa.Column('consent_date', sa.DateTime(), nullable=True),
        sa.Column('consent_text', sa.Text(), nullable=True),
        sa.Column('edited_at', sa.DateTime(), nullable=True),
        sa.Column('edited_by', sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_submissions_form_id'), 'submissions', ['form_id'])
    op.create_index(op.f('ix_submissions_status'), 'submissions', ['status'])
    op.create_index(op.f('ix_submissions_email_hash'), 'submissions', ['email_hash'])
    op.create_index(op.f('ix_submissions_cpf_rf_hash'), 'submissions', ['cpf_rf_hash'])
    op.create_index(op.f('ix_submissions_cpf_hash'), 'submissions', ['cpf_hash'])
    op.create_index(op.f('ix_submissions_rf_hash'), 'submissions', ['rf_hash'])
    op.create_index(op.f('ix_submissions_auth_code'), 'submissions', ['auth_code'])


def downgrade() -> None:
    for column in ('auth_code', 'rf_hash', 'cpf_hash', 'cpf_rf_hash', 'email_hash', 'status', 'form_id'):
        op.drop_index(op.f(f'ix_submissions_{column}'), table_name='submissions')
    op.drop_table('submissions')

"""Initial schema

Revision ID: 001
Revises: 
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create submissions table
    op.create_table(
        'submissions',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('predicted_date', sa.Date(), nullable=False),
        sa.Column('identity_token', sa.String(length=64), nullable=False),
        sa.Column('network_fingerprint', sa.String(length=128), nullable=False),
        sa.Column('weight', sa.Double(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('weight >= 0.1 AND weight <= 1.0', name='ck_submissions_weight_range'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('identity_token', name='uq_submissions_identity_token'),
        sa.UniqueConstraint('network_fingerprint', name='uq_submissions_network_fingerprint'),
    )
    op.create_index('idx_submissions_predicted_date', 'submissions', ['predicted_date'], unique=False)
    op.create_index('idx_submissions_created_at', 'submissions', ['created_at'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_submissions_created_at', table_name='submissions')
    op.drop_index('idx_submissions_predicted_date', table_name='submissions')
    op.drop_table('submissions')

"""count wrong guesses on one-time codes

Revision ID: access_control_002
Revises: access_control_001
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'access_control_002'
down_revision = 'access_control_001'
branch_labels = None
depends_on = None


def upgrade():
    op.add_column(
        'one_time_codes',
        sa.Column('attempts', sa.Integer(), server_default='0', nullable=False)
    )


def downgrade():
    op.drop_column('one_time_codes', 'attempts')

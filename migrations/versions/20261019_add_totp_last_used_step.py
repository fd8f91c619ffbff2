"""Remember the last accepted TOTP time step

Revision ID: 9d3a6c41f0b2
Revises: 5c1f0e2b7a91
Create Date: 2026-10-19 15:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '9d3a6c41f0b2'
down_revision = '5c1f0e2b7a91'
branch_labels = None
depends_on = None


def upgrade():
    conn = op.get_bind()
    inspector = sa.inspect(conn)

    columns = [col['name'] for col in inspector.get_columns('two_factor_credential')]
    if 'last_used_step' not in columns:
        # Existing credentials start with no step recorded
        op.add_column('two_factor_credential',
                      sa.Column('last_used_step', sa.Integer(), nullable=True))


def downgrade():
    with op.batch_alter_table('two_factor_credential') as batch_op:
        batch_op.drop_column('last_used_step')

"""create user and room_record tables

Revision ID: 3c9a7d12e0f4
Revises:
Create Date: 2026-10-17 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c9a7d12e0f4'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('password_hash', sa.String(length=256), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('user') as batch_op:
        batch_op.create_index('ix_user_username', ['username'], unique=True)

    op.create_table(
        'room_record',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('room_id', sa.String(length=16), nullable=False),
        sa.Column('host_user_id', sa.Integer(), nullable=False),
        sa.Column('client_user_id', sa.Integer(), nullable=True),
        sa.Column('invited_user_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='waiting'),
        sa.Column('last_level', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('state_json', sa.Text(), nullable=True),
        sa.Column('revision', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['host_user_id'], ['user.id']),
        sa.ForeignKeyConstraint(['client_user_id'], ['user.id']),
        sa.ForeignKeyConstraint(['invited_user_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('room_record') as batch_op:
        batch_op.create_index('ix_room_record_room_id', ['room_id'], unique=True)


def downgrade():
    with op.batch_alter_table('room_record') as batch_op:
        batch_op.drop_index('ix_room_record_room_id')
    op.drop_table('room_record')
    with op.batch_alter_table('user') as batch_op:
        batch_op.drop_index('ix_user_username')
    op.drop_table('user')

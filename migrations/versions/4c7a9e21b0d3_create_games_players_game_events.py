"""create games, players and game_events

Revision ID: 4c7a9e21b0d3
Revises: 
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c7a9e21b0d3'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'games',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=6), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('started_at', sa.Float(), nullable=True),
        sa.Column('paused_at', sa.Float(), nullable=True),
        sa.Column('total_vault_display', sa.Float(), nullable=False),
        sa.Column('actual_vault', sa.Float(), nullable=False),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('games') as batch_op:
        batch_op.create_index(batch_op.f('ix_games_code'), ['code'], unique=False)

    op.create_table(
        'players',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('game_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('balance', sa.Float(), nullable=False),
        sa.Column('has_withdrawn', sa.Boolean(), nullable=False),
        sa.Column('withdrawn_amount', sa.Float(), nullable=False),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['game_id'], ['games.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('players') as batch_op:
        batch_op.create_index(batch_op.f('ix_players_game_id'), ['game_id'], unique=False)

    op.create_table(
        'game_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('game_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=32), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['game_id'], ['games.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('game_events') as batch_op:
        batch_op.create_index(batch_op.f('ix_game_events_game_id'), ['game_id'], unique=False)


def downgrade():
    with op.batch_alter_table('game_events') as batch_op:
        batch_op.drop_index(batch_op.f('ix_game_events_game_id'))
    op.drop_table('game_events')
    with op.batch_alter_table('players') as batch_op:
        batch_op.drop_index(batch_op.f('ix_players_game_id'))
    op.drop_table('players')
    with op.batch_alter_table('games') as batch_op:
        batch_op.drop_index(batch_op.f('ix_games_code'))
    op.drop_table('games')

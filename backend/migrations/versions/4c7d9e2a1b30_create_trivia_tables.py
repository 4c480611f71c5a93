"""create lobby, round, question and game_session tables

Revision ID: 4c7d9e2a1b30
Revises:
Create Date: 2026-10-18 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c7d9e2a1b30'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'round',
        sa.Column('id', sa.String(length=32), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('total_questions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.Float(), nullable=True),
    )
    op.create_index('ix_round_order', 'round', ['order'])

    op.create_table(
        'question',
        sa.Column('id', sa.String(length=32), primary_key=True),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('choices', sa.JSON(), nullable=False),
        sa.Column('correct_index', sa.Integer(), nullable=True),
        sa.Column('correct_answers', sa.JSON(), nullable=False),
        sa.Column('time_limit', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('points', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('round_id', sa.String(length=32), sa.ForeignKey('round.id'), nullable=True),
        sa.Column('round_index', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.Float(), nullable=True),
    )
    op.create_index('ix_question_is_active', 'question', ['is_active'])
    op.create_index('ix_question_round_id', 'question', ['round_id'])

    op.create_table(
        'lobby',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('max_players', sa.Integer(), nullable=False),
        sa.Column('countdown', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('game_state', sa.String(length=32), nullable=False),
        sa.Column('current_question', sa.JSON(), nullable=True),
        sa.Column('current_question_index', sa.Integer(), nullable=False),
        sa.Column('current_round_id', sa.String(length=32), nullable=True),
        sa.Column('total_questions_in_round', sa.Integer(), nullable=False),
        sa.Column('total_rounds', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.Float(), nullable=True),
        sa.Column('game_started_at', sa.Float(), nullable=True),
        sa.Column('stream_url', sa.String(length=512), nullable=True),
        sa.Column('round_progress', sa.JSON(), nullable=False),
        sa.Column('host', sa.JSON(), nullable=True),
        sa.Column('players', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.Float(), nullable=True),
        sa.Column('updated_at', sa.Float(), nullable=True),
    )
    op.create_index('ix_lobby_status', 'lobby', ['status'])

    op.create_table(
        'game_session',
        sa.Column('id', sa.String(length=32), primary_key=True),
        sa.Column('lobby_id', sa.String(length=64), nullable=False),
        sa.Column('game_name', sa.String(length=128), nullable=True),
        sa.Column('host_id', sa.String(length=64), nullable=True),
        sa.Column('host_name', sa.String(length=128), nullable=True),
        sa.Column('started_at', sa.Float(), nullable=True),
        sa.Column('ended_at', sa.Float(), nullable=False),
        sa.Column('total_rounds_played', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('players', sa.JSON(), nullable=False),
    )
    op.create_index('ix_game_session_lobby_id', 'game_session', ['lobby_id'])


def downgrade():
    op.drop_index('ix_game_session_lobby_id', table_name='game_session')
    op.drop_table('game_session')
    op.drop_index('ix_lobby_status', table_name='lobby')
    op.drop_table('lobby')
    op.drop_index('ix_question_round_id', table_name='question')
    op.drop_index('ix_question_is_active', table_name='question')
    op.drop_table('question')
    op.drop_index('ix_round_order', table_name='round')
    op.drop_table('round')

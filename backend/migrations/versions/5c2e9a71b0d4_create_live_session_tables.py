"""create live_session, player and answer_record tables

Revision ID: 5c2e9a71b0d4
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c2e9a71b0d4'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'live_session',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=6), nullable=False),
        sa.Column('active_code', sa.String(length=6), nullable=True),
        sa.Column('quiz_ref', sa.String(length=128), nullable=False),
        sa.Column('host_id', sa.String(length=128), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('finish_reason', sa.String(length=32), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('active_code'),
    )
    op.create_index('ix_live_session_code', 'live_session', ['code'])
    op.create_index('ix_live_session_host_id', 'live_session', ['host_id'])

    op.create_table(
        'player',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('session_id', sa.Integer(), sa.ForeignKey('live_session.id'), nullable=False),
        sa.Column('player_key', sa.String(length=128), nullable=False),
        sa.Column('user_id', sa.String(length=128), nullable=True),
        sa.Column('display_name', sa.String(length=64), nullable=False),
        sa.Column('avatar_token', sa.String(length=64), nullable=True),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('joined_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('session_id', 'player_key', name='uq_player_session_key'),
    )
    op.create_index('ix_player_session_id', 'player', ['session_id'])

    op.create_table(
        'answer_record',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('session_id', sa.Integer(), sa.ForeignKey('live_session.id'), nullable=False),
        sa.Column('player_id', sa.Integer(), sa.ForeignKey('player.id'), nullable=False),
        sa.Column('question_index', sa.Integer(), nullable=False),
        sa.Column('submitted_answer', sa.JSON(), nullable=True),
        sa.Column('is_timeout', sa.Boolean(), nullable=False),
        sa.Column('is_correct', sa.Boolean(), nullable=False),
        sa.Column('points_awarded', sa.Integer(), nullable=False),
        sa.Column('elapsed_seconds', sa.Float(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('player_id', 'question_index', name='uq_answer_player_question'),
    )
    op.create_index('ix_answer_record_session_id', 'answer_record', ['session_id'])


def downgrade():
    op.drop_index('ix_answer_record_session_id', table_name='answer_record')
    op.drop_table('answer_record')
    op.drop_index('ix_player_session_id', table_name='player')
    op.drop_table('player')
    op.drop_index('ix_live_session_host_id', table_name='live_session')
    op.drop_index('ix_live_session_code', table_name='live_session')
    op.drop_table('live_session')

"""create study_sessions and session_answers

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'a1b2c3d4e5f6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'study_sessions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('session_type', sa.String(16), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='in_progress'),
        sa.Column('track', sa.String(16), nullable=True),
        sa.Column('remaining_time_seconds', sa.Integer(), nullable=True),
        sa.Column('section', sa.String(16), nullable=True),
        sa.Column('difficulty', sa.String(16), nullable=True),
        sa.Column('categories', sa.JSON(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('paused_at', sa.DateTime(), nullable=True),
        sa.Column('time_paused_seconds', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('time_spent_seconds', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
        sa.Column('questions', sa.JSON(), nullable=False),
        sa.Column('total_questions', sa.Integer(), nullable=False),
        sa.Column('batch_size', sa.Integer(), nullable=False),
        sa.Column('generated_batches', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('generation_context', sa.JSON(), nullable=True),
        sa.Column('generation_in_progress', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('generation_started_at', sa.DateTime(), nullable=True),
        sa.Column('questions_answered', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('verbal_score', sa.Integer(), nullable=True),
        sa.Column('quantitative_score', sa.Integer(), nullable=True),
        sa.Column('overall_score', sa.Integer(), nullable=True),
        sa.Column('strengths', sa.JSON(), nullable=True),
        sa.Column('weaknesses', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_study_sessions_user_id', 'study_sessions', ['user_id'])
    op.create_index('ix_study_sessions_user_type_status', 'study_sessions', ['user_id', 'session_type', 'status'])

    op.create_table(
        'session_answers',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('session_id', sa.String(36), sa.ForeignKey('study_sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('question_index', sa.Integer(), nullable=False),
        sa.Column('question_id', sa.String(64), nullable=False),
        sa.Column('selected_answer', sa.Integer(), nullable=False),
        sa.Column('is_correct', sa.Boolean(), nullable=False),
        sa.Column('time_spent_seconds', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('session_id', 'question_index', name='uq_session_answers_session_question'),
    )
    op.create_index('ix_session_answers_session_id', 'session_answers', ['session_id'])


def downgrade() -> None:
    op.drop_index('ix_session_answers_session_id', table_name='session_answers')
    op.drop_table('session_answers')
    op.drop_index('ix_study_sessions_user_type_status', table_name='study_sessions')
    op.drop_index('ix_study_sessions_user_id', table_name='study_sessions')
    op.drop_table('study_sessions')

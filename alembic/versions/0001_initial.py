"""Initial schema: groups, activities, questions, responses, evaluation results

Revision ID: 0001_initial
Revises: None
Create Date: 2026-10-19 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    ]


def _evaluation_columns():
    return [
        sa.Column('evaluation_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('evaluation_job_id', sa.String(64)),
        sa.Column('evaluation_error', sa.Text()),
        sa.Column('evaluation_requested_at', sa.DateTime()),
        sa.Column('evaluated_at', sa.DateTime()),
        sa.Column('evaluation_score', sa.Float()),
    ]


def upgrade() -> None:
    op.create_table(
        'groups',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        *_timestamps(),
    )
    op.create_table(
        'activities',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('group_id', sa.String(36), sa.ForeignKey('groups.id'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('ai_rating_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('subject', sa.String(120)),
        sa.Column('topic', sa.String(255)),
        sa.Column('education_level', sa.String(60)),
        *_timestamps(),
    )
    op.create_index('ix_activities_group_id', 'activities', ['group_id'])

    op.create_table(
        'questions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('activity_id', sa.String(36), sa.ForeignKey('activities.id'), nullable=False),
        sa.Column('creator_id', sa.String(36)),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_evaluation_columns(),
        *_timestamps(),
    )
    op.create_index('ix_questions_activity_id', 'questions', ['activity_id'])
    op.create_index('ix_questions_evaluation_status', 'questions', ['evaluation_status'])

    op.create_table(
        'responses',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('question_id', sa.String(36), sa.ForeignKey('questions.id'), nullable=False),
        sa.Column('creator_id', sa.String(36)),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_evaluation_columns(),
        *_timestamps(),
    )
    op.create_index('ix_responses_question_id', 'responses', ['question_id'])
    op.create_index('ix_responses_evaluation_status', 'responses', ['evaluation_status'])

    op.create_table(
        'evaluation_results',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('entity_kind', sa.String(20), nullable=False),
        sa.Column('entity_id', sa.String(36), nullable=False),
        sa.Column('job_id', sa.String(64)),
        sa.Column('ai_model', sa.String(120)),
        sa.Column('overall_score', sa.Float()),
        sa.Column('result_json', sa.JSON(), nullable=False),
        sa.Column('processing_time_ms', sa.Integer()),
        *_timestamps(),
        sa.UniqueConstraint('entity_kind', 'entity_id', name='uq_evaluation_results_entity'),
    )


def downgrade() -> None:
    op.drop_table('evaluation_results')
    op.drop_index('ix_responses_evaluation_status', table_name='responses')
    op.drop_index('ix_responses_question_id', table_name='responses')
    op.drop_table('responses')
    op.drop_index('ix_questions_evaluation_status', table_name='questions')
    op.drop_index('ix_questions_activity_id', table_name='questions')
    op.drop_table('questions')
    op.drop_index('ix_activities_group_id', table_name='activities')
    op.drop_table('activities')
    op.drop_table('groups')

"""Initial exam schema

Revision ID: 001
Revises: 
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # Create exam_tests table
    op.create_table(
        'exam_tests',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('family', sa.String(32), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('difficulty', sa.String(32), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.Column('variant', sa.String(32), nullable=True),
        sa.Column('created_by', sa.String(255), nullable=False),
        sa.Column('section_ids', sa.JSON(), nullable=False),
        sa.Column('revision', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_exam_tests')
    )
    op.create_index('ix_exam_tests_family', 'exam_tests', ['family'])

    # Create exam_sections table
    op.create_table(
        'exam_sections',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('family', sa.String(32), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('instructions', sa.Text(), nullable=False),
        sa.Column('test_id', sa.String(36), nullable=True),
        sa.Column('question_ids', sa.JSON(), nullable=False),
        sa.Column('question_count', sa.Integer(), nullable=True),
        sa.Column('media', sa.JSON(), nullable=False),
        sa.Column('created_by', sa.String(255), nullable=False),
        sa.Column('revision', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_exam_sections')
    )
    op.create_index('ix_exam_sections_test_id', 'exam_sections', ['test_id'])

    # Create exam_questions table
    op.create_table(
        'exam_questions',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('family', sa.String(32), nullable=False),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('question_type', sa.String(50), nullable=False),
        sa.Column('options', sa.JSON(), nullable=False),
        sa.Column('correct_answers', sa.JSON(), nullable=False),
        sa.Column('points', sa.Float(), nullable=False),
        sa.Column('section_id', sa.String(36), nullable=True),
        sa.Column('created_by', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_exam_questions')
    )
    op.create_index('ix_exam_questions_section_id', 'exam_questions', ['section_id'])

    # Create exam_submissions table
    op.create_table(
        'exam_submissions',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('family', sa.String(32), nullable=False),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('test_id', sa.String(36), nullable=False),
        sa.Column('answers', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('score', sa.Float(), nullable=True),
        sa.Column('band_score', sa.Float(), nullable=True),
        sa.Column('feedback', sa.Text(), nullable=False),
        sa.Column('graded_by', sa.String(255), nullable=True),
        sa.Column('graded_at', sa.DateTime(), nullable=True),
        sa.Column('submitted_at', sa.DateTime(), nullable=False),
        sa.Column('completion_time_minutes', sa.Float(), nullable=True),
        sa.Column('answer_sheet', sa.String(512), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_exam_submissions')
    )
    op.create_index('ix_exam_submissions_family', 'exam_submissions', ['family'])
    op.create_index('ix_exam_submissions_user_id', 'exam_submissions', ['user_id'])
    op.create_index('ix_exam_submissions_test_id', 'exam_submissions', ['test_id'])
    op.create_index('ix_exam_submissions_status', 'exam_submissions', ['status'])
    op.create_index('ix_exam_submissions_submitted_at', 'exam_submissions', ['submitted_at'])
    op.create_index('idx_exam_submission_user_test', 'exam_submissions', ['user_id', 'test_id'])


def downgrade():
    op.drop_table('exam_submissions')
    op.drop_table('exam_questions')
    op.drop_table('exam_sections')
    op.drop_table('exam_tests')

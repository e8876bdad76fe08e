"""Per-criterion bands and the one-attempt key on submissions

Revision ID: 002
Revises: 001
Create Date: 2026-10-19 15:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '002'
down_revision = '001'
branch_labels = None
depends_on = None


def upgrade():
    op.add_column('exam_submissions', sa.Column('criteria', sa.JSON(), nullable=True))
    op.add_column('exam_submissions', sa.Column('attempt_key', sa.String(300), nullable=True))
    op.create_index(
        'uq_exam_submission_attempt_key',
        'exam_submissions',
        ['attempt_key'],
        unique=True
    )


def downgrade():
    op.drop_index('uq_exam_submission_attempt_key', table_name='exam_submissions')
    op.drop_column('exam_submissions', 'attempt_key')
    op.drop_column('exam_submissions', 'criteria')

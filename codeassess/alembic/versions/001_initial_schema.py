"""Initial assessment schema

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

ID = sa.String(36)


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', ID, primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('email', name='uq_users_email')
    )

    op.create_table(
        'difficulty_levels',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column('name', sa.String(64), nullable=False)
    )

    op.create_table(
        'code_languages',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column('name', sa.String(64), nullable=False)
    )

    op.create_table(
        'quizzes',
        sa.Column('id', ID, primary_key=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('instruction', sa.Text(), nullable=True),
        sa.Column('user_id', ID, sa.ForeignKey('users.id'), nullable=True),
        sa.Column('difficulty_level_id', sa.Integer(), sa.ForeignKey('difficulty_levels.id'), nullable=True),
        sa.Column('code_language_id', sa.Integer(), sa.ForeignKey('code_languages.id'), nullable=True)
    )

    op.create_table(
        'assessments',
        sa.Column('id', ID, primary_key=True),
        sa.Column('owner_id', ID, sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('start_at', sa.DateTime(), nullable=True),
        sa.Column('end_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP'))
    )

    op.create_table(
        'assessment_quizzes',
        sa.Column('assessment_id', ID, sa.ForeignKey('assessments.id'), primary_key=True),
        sa.Column('quiz_id', ID, sa.ForeignKey('quizzes.id'), primary_key=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP'))
    )

    op.create_table(
        'assessment_candidates',
        sa.Column('assessment_id', ID, sa.ForeignKey('assessments.id'), primary_key=True),
        sa.Column('candidate_id', ID, sa.ForeignKey('users.id'), primary_key=True),
        sa.Column('status', sa.String(16), nullable=False, server_default='PENDING'),
        sa.Column('token', sa.String(64), nullable=True),
        sa.Column('accepted_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP'))
    )

    op.create_table(
        'assessment_candidate_emails',
        sa.Column('id', ID, primary_key=True),
        sa.Column('assessment_id', ID, sa.ForeignKey('assessments.id'), nullable=False, index=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('status_code', sa.Integer(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP'))
    )

    op.create_table(
        'submissions',
        sa.Column('id', ID, primary_key=True),
        sa.Column('user_id', ID, sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('quiz_id', ID, sa.ForeignKey('quizzes.id'), nullable=False, index=True),
        sa.Column('code', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP'))
    )

    op.create_table(
        'assessment_results',
        sa.Column('id', ID, primary_key=True),
        sa.Column('assessment_id', ID, sa.ForeignKey('assessments.id'), nullable=False, index=True),
        sa.Column('candidate_id', ID, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('quiz_id', ID, sa.ForeignKey('quizzes.id'), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='STARTED'),
        sa.Column('total_point', sa.Float(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('assessment_id', 'candidate_id', 'quiz_id', name='uq_assessment_results_assessment_id'),
        sa.CheckConstraint('total_point >= 0', name='ck_assessment_results_total_point_non_negative')
    )

    op.create_table(
        'assessment_quiz_submissions',
        sa.Column('id', ID, primary_key=True),
        sa.Column('assessment_result_id', ID, sa.ForeignKey('assessment_results.id'), nullable=False, index=True),
        sa.Column('sequence', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('submission_id', ID, sa.ForeignKey('submissions.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP'))
    )

    op.create_table(
        'assessment_points',
        sa.Column('id', ID, primary_key=True),
        sa.Column('name', sa.String(64), nullable=False),
        sa.Column('point', sa.Float(), nullable=False),
        sa.UniqueConstraint('name', name='uq_assessment_points_name')
    )

    op.create_table(
        'quiz_point_collections',
        sa.Column('id', ID, primary_key=True),
        sa.Column('user_id', ID, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('quiz_id', ID, sa.ForeignKey('quizzes.id'), nullable=False, index=True),
        sa.Column('point', sa.Float(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('user_id', 'quiz_id', name='uq_quiz_point_collections_user_id')
    )

    op.create_table(
        'submission_points',
        sa.Column('id', ID, primary_key=True),
        sa.Column('submission_id', ID, sa.ForeignKey('submissions.id'), nullable=False, index=True),
        sa.Column('user_id', ID, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('assessment_point_id', ID, sa.ForeignKey('assessment_points.id'), nullable=False),
        sa.Column('point', sa.Float(), nullable=False)
    )

    op.create_table(
        'candidate_activity_logs',
        sa.Column('id', ID, primary_key=True),
        sa.Column('user_id', ID, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('assessment_id', ID, nullable=False, index=True),
        sa.Column('action', sa.String(16), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP'))
    )


def downgrade():
    op.drop_table('candidate_activity_logs')
    op.drop_table('submission_points')
    op.drop_table('quiz_point_collections')
    op.drop_table('assessment_points')
    op.drop_table('assessment_quiz_submissions')
    op.drop_table('assessment_results')
    op.drop_table('submissions')
    op.drop_table('assessment_candidate_emails')
    op.drop_table('assessment_candidates')
    op.drop_table('assessment_quizzes')
    op.drop_table('assessments')
    op.drop_table('quizzes')
    op.drop_table('code_languages')
    op.drop_table('difficulty_levels')
    op.drop_table('users')

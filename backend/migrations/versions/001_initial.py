"""Initial migration - create all tables

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-19

Creates all database tables for the Exam Session Engine:
- tests: Catalog test definitions (sections as JSON text) and marking
- attempts: One student's run through one test, with navigation cursor
- section_states: Per-section status and server-authoritative time
- responses: Answers and review marks
- attempt_results: Result computed once at submission

Also creates indexes for common query patterns and the partial unique
index allowing one open attempt per (student, test).
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── Tests Table ───────────────────────────────────────────
    op.create_table(
        'tests',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('instructions', sa.Text(), nullable=True),
        sa.Column('sections', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('marks_per_correct', sa.Float(), nullable=False, server_default='3'),
        sa.Column('negative_marks', sa.Float(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=True),
    )

    # ── Attempts Table ────────────────────────────────────────
    op.create_table(
        'attempts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('student_id', sa.String(64), nullable=False),
        sa.Column('test_id', sa.String(36), sa.ForeignKey('tests.id'), nullable=False),
        sa.Column('status', sa.Text(), nullable=False, server_default='IN_PROGRESS'),
        sa.Column('current_section_index', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_question_index', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('submitted_at', sa.DateTime(), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(), nullable=True),
    )

    op.create_index('ix_attempts_student_id', 'attempts', ['student_id'])
    op.create_index('ix_attempts_test_id', 'attempts', ['test_id'])
    op.create_index('ix_attempts_status', 'attempts', ['status'])
    op.create_index('uq_attempts_open_per_student_test', 'attempts', ['student_id', 'test_id'],
                    unique=True, postgresql_where=sa.text("status <> 'SUBMITTED'"))

    # ── Section States Table ──────────────────────────────────
    op.create_table(
        'section_states',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('attempt_id', sa.String(36), sa.ForeignKey('attempts.id'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False, server_default='PENDING'),
        sa.Column('duration_seconds', sa.Integer(), nullable=False),
        sa.Column('remaining_seconds', sa.Integer(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('visited_questions', sa.Text(), nullable=False, server_default='[]'),
        sa.UniqueConstraint('attempt_id', 'position', name='uq_section_states_attempt_position'),
    )

    # ── Responses Table ───────────────────────────────────────
    op.create_table(
        'responses',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('attempt_id', sa.String(36), sa.ForeignKey('attempts.id'), nullable=False),
        sa.Column('question_id', sa.String(64), nullable=False),
        sa.Column('section_index', sa.Integer(), nullable=False),
        sa.Column('selected_answer', sa.Text(), nullable=True),
        sa.Column('is_marked_for_review', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('attempt_id', 'question_id', name='uq_responses_attempt_question'),
    )

    # ── Attempt Results Table ─────────────────────────────────
    op.create_table(
        'attempt_results',
        sa.Column('attempt_id', sa.String(36), sa.ForeignKey('attempts.id'), primary_key=True),
        sa.Column('total_questions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_answered', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_not_answered', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_correct', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_incorrect', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('max_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('percentage', sa.Float(), nullable=False, server_default='0'),
        sa.Column('computed_at', sa.DateTime(), server_default=sa.func.now(), nullable=True),
        sa.Column('explanation', sa.Text(), nullable=True),
    )


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_table('attempt_results')
    op.drop_table('responses')
    op.drop_table('section_states')
    op.drop_index('uq_attempts_open_per_student_test', table_name='attempts')
    op.drop_index('ix_attempts_status', table_name='attempts')
    op.drop_index('ix_attempts_test_id', table_name='attempts')
    op.drop_index('ix_attempts_student_id', table_name='attempts')
    op.drop_table('attempts')
    op.drop_table('tests')

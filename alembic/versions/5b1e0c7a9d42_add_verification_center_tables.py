"""Add verification center tables.

Revision ID: 5b1e0c7a9d42
Revises:
Create Date: 2025-01-15

Creates the users table read by the verification core and the pillar,
step and evidence tables of the Verification Center.
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '5b1e0c7a9d42'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create users and verification center tables."""
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('email', sa.String(), nullable=False, unique=True),
        sa.Column('first_name', sa.String(), nullable=True),
        sa.Column('last_name', sa.String(), nullable=True),
        sa.Column('user_role', sa.String(32), nullable=False, server_default='student',
                  comment='student | institution | admin'),
        sa.Column('email_verified_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'verification_pillars',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('pillar_name', sa.String(32), nullable=False,
                  comment='personal_info | academic_info | documents | school'),
        sa.Column('weight_percentage', sa.Integer(), nullable=False, server_default='25'),
        sa.Column('completion_percentage', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(32), nullable=False, server_default='not_verified',
                  comment='not_verified | in_progress | verified'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'pillar_name', name='uq_verification_pillar_user_name'),
        comment='Weighted verification pillars, four per user',
    )
    op.create_index('ix_verification_pillars_user_id', 'verification_pillars', ['user_id'])

    op.create_table(
        'verification_steps',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('pillar_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('verification_pillars.id', ondelete='CASCADE'), nullable=False),
        sa.Column('step_name', sa.String(), nullable=False),
        sa.Column('step_order', sa.Integer(), nullable=False),
        sa.Column('step_type', sa.String(16), nullable=False,
                  comment='automatic | manual | external'),
        sa.Column('status', sa.String(32), nullable=False, server_default='not_verified',
                  comment='not_verified | pending | failed | verified'),
        sa.Column('status_message', sa.Text(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('failure_suggestion', sa.Text(), nullable=True),
        sa.Column('requirement_checklist', postgresql.JSONB(), nullable=True,
                  comment='Ordered [{requirement, met}] pairs'),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_retries', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('admin_reviewer_id', sa.String(), nullable=True),
        sa.Column('admin_review_notes', sa.Text(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(), nullable=True),
        sa.Column('last_attempted_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('verified_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1',
                  comment='Optimistic lock counter'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('pillar_id', 'step_order', name='uq_verification_step_pillar_order'),
        comment='Verification steps created from the step catalog',
    )
    op.create_index('ix_verification_steps_user_id', 'verification_steps', ['user_id'])
    op.create_index(
        'ix_verification_steps_status_attempted',
        'verification_steps',
        ['status', 'last_attempted_at'],
    )

    op.create_table(
        'verification_step_evidence',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('step_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('verification_steps.id', ondelete='CASCADE'), nullable=False),
        sa.Column('evidence_type', sa.String(), nullable=False),
        sa.Column('evidence_url', sa.Text(), nullable=False),
        sa.Column('evidence_metadata', postgresql.JSONB(), nullable=True),
        sa.Column('uploaded_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now()),
        comment='Evidence references; rows are never updated or deleted',
    )
    op.create_index(
        'ix_verification_step_evidence_step_uploaded',
        'verification_step_evidence',
        ['step_id', 'uploaded_at'],
    )


def downgrade() -> None:
    """Drop verification center tables."""
    op.drop_index('ix_verification_step_evidence_step_uploaded', table_name='verification_step_evidence')
    op.drop_table('verification_step_evidence')
    op.drop_index('ix_verification_steps_status_attempted', table_name='verification_steps')
    op.drop_index('ix_verification_steps_user_id', table_name='verification_steps')
    op.drop_table('verification_steps')
    op.drop_index('ix_verification_pillars_user_id', table_name='verification_pillars')
    op.drop_table('verification_pillars')
    op.drop_table('users')

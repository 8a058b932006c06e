"""Create preference, attachment and file processing tables

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_JOB_CONDITION = "status IN ('pending', 'processing')"


def upgrade() -> None:
    op.create_table(
        'departments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('location_code', sa.String(50), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('department_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['department_id'], ['departments.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'user_preferences',
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('theme', sa.String(10), nullable=False, server_default='light'),
        sa.Column('dashboard_layout', sa.JSON(), nullable=True),
        sa.Column('notification_settings', sa.Integer(), nullable=False, server_default='7'),
        sa.Column('email_notifications', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('push_notifications', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('language', sa.String(5), nullable=False, server_default='en'),
        sa.Column('timezone', sa.String(50), nullable=False, server_default='Asia/Jakarta'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('user_id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
    )

    op.create_table(
        'invoice_attachments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('file_name', sa.String(255), nullable=False),
        sa.Column('file_path', sa.String(500), nullable=False),
        sa.Column('file_size', sa.BigInteger(), nullable=True),
        sa.Column('mime_type', sa.String(100), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('uploaded_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['uploaded_by'], ['users.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_invoice_attachments_invoice_id', 'invoice_attachments', ['invoice_id'])
    op.create_index('ix_invoice_attachments_file_path', 'invoice_attachments', ['file_path'], unique=True)

    op.create_table(
        'file_processing_jobs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('file_id', sa.Integer(), nullable=False),
        sa.Column('job_type', sa.String(50), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('job_parameters', sa.JSON(), nullable=True),
        sa.Column('result_data', sa.JSON(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['file_id'], ['invoice_attachments.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_file_processing_jobs_status_type', 'file_processing_jobs', ['status', 'job_type'])
    op.create_index('ix_file_processing_jobs_file_type', 'file_processing_jobs', ['file_id', 'job_type'])
    op.create_index('ix_file_processing_jobs_started_at', 'file_processing_jobs', ['started_at'])
    op.create_index('ix_file_processing_jobs_created_at', 'file_processing_jobs', ['created_at'])

    # At most one pending/processing job per file and job type
    op.create_index(
        'uq_file_processing_jobs_active',
        'file_processing_jobs',
        ['file_id', 'job_type'],
        unique=True,
        postgresql_where=sa.text(ACTIVE_JOB_CONDITION),
        sqlite_where=sa.text(ACTIVE_JOB_CONDITION),
    )

    op.create_table(
        'file_watermarks',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('original_file_id', sa.Integer(), nullable=False),
        sa.Column('watermarked_path', sa.String(500), nullable=False),
        sa.Column('watermark_text', sa.String(255), nullable=False),
        sa.Column('watermark_type', sa.String(20), nullable=False, server_default='text'),
        sa.Column('watermark_settings', sa.JSON(), nullable=True),
        sa.Column('file_size', sa.BigInteger(), nullable=True),
        sa.Column('checksum', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['original_file_id'], ['invoice_attachments.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_file_watermarks_original_file_id', 'file_watermarks', ['original_file_id'])
    op.create_index('ix_file_watermarks_created_at', 'file_watermarks', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_file_watermarks_created_at', 'file_watermarks')
    op.drop_index('ix_file_watermarks_original_file_id', 'file_watermarks')
    op.drop_table('file_watermarks')

    op.drop_index('uq_file_processing_jobs_active', 'file_processing_jobs')
    op.drop_index('ix_file_processing_jobs_created_at', 'file_processing_jobs')
    op.drop_index('ix_file_processing_jobs_started_at', 'file_processing_jobs')
    op.drop_index('ix_file_processing_jobs_file_type', 'file_processing_jobs')
    op.drop_index('ix_file_processing_jobs_status_type', 'file_processing_jobs')
    op.drop_table('file_processing_jobs')

    op.drop_index('ix_invoice_attachments_file_path', 'invoice_attachments')
    op.drop_index('ix_invoice_attachments_invoice_id', 'invoice_attachments')
    op.drop_table('invoice_attachments')

    op.drop_table('user_preferences')

    op.drop_index('ix_users_email', 'users')
    op.drop_table('users')

    op.drop_table('departments')

"""kyc baseline

Revision ID: 0001_kyc_baseline
Revises: 
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_kyc_baseline'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the KYC records, sessions, documents, live captures, audit and callback ledger tables."""
    op.create_table('kyc_records',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='NOT_STARTED'),
        sa.Column('verification_level', sa.String(), nullable=False, server_default='NONE'),
        sa.Column('provider_name', sa.String(), nullable=True),
        sa.Column('reference_id', sa.String(), nullable=True),
        sa.Column('encrypted_personal_data', sa.Text(), nullable=True),
        sa.Column('history', sa.JSON(), nullable=False),
        sa.Column('security_flags', sa.JSON(), nullable=False),
        sa.Column('verification_data', sa.JSON(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('aml_status', sa.String(), nullable=True),
        sa.Column('aml_risk_score', sa.String(), nullable=True),
        sa.Column('aml_checked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_kyc_records_user_id'), 'kyc_records', ['user_id'], unique=False)
    op.create_index(op.f('ix_kyc_records_reference_id'), 'kyc_records', ['reference_id'], unique=False)
    op.create_index('ix_kyc_records_user_updated', 'kyc_records', ['user_id', 'updated_at'], unique=False)
    op.create_index('ix_kyc_records_status_updated', 'kyc_records', ['status', 'updated_at'], unique=False)

    op.create_table('kyc_callback_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('provider', sa.String(), nullable=False),
        sa.Column('event_id', sa.String(), nullable=False),
        sa.Column('reference_id', sa.String(), nullable=True),
        sa.Column('vendor_status', sa.String(), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider', 'event_id', name='uq_kyc_callback_provider_event')
    )

    op.create_table('kyc_sessions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('session_id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='ACTIVE'),
        sa.Column('verification_level', sa.String(), nullable=False, server_default='BASIC'),
        sa.Column('security_context', sa.JSON(), nullable=False),
        sa.Column('progress', sa.JSON(), nullable=False),
        sa.Column('invalidation_reason', sa.String(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_kyc_sessions_session_id'), 'kyc_sessions', ['session_id'], unique=True)
    op.create_index(op.f('ix_kyc_sessions_user_id'), 'kyc_sessions', ['user_id'], unique=False)
    op.create_index('ix_kyc_sessions_user_status', 'kyc_sessions', ['user_id', 'status'], unique=False)

    op.create_table('kyc_documents',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('session_id', sa.String(), nullable=False),
        sa.Column('document_type', sa.String(), nullable=False),
        sa.Column('original_file_name', sa.String(), nullable=False),
        sa.Column('secure_file_name', sa.String(), nullable=False),
        sa.Column('content_type', sa.String(), nullable=True),
        sa.Column('file_size', sa.Integer(), nullable=False),
        sa.Column('content_hash', sa.String(), nullable=False),
        sa.Column('is_encrypted', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('encryption_method', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='UPLOADED'),
        sa.Column('deletion_reason', sa.Text(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('secure_file_name')
    )
    op.create_index(op.f('ix_kyc_documents_user_id'), 'kyc_documents', ['user_id'], unique=False)
    op.create_index(op.f('ix_kyc_documents_session_id'), 'kyc_documents', ['session_id'], unique=False)
    op.create_index('ix_kyc_documents_status_deleted', 'kyc_documents', ['status', 'deleted_at'], unique=False)

    op.create_table('kyc_live_captures',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('session_id', sa.String(), nullable=False),
        sa.Column('document_type', sa.String(), nullable=False),
        sa.Column('is_duplex', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('secure_file_name', sa.String(), nullable=False),
        sa.Column('content_hash', sa.String(), nullable=False),
        sa.Column('file_size', sa.Integer(), nullable=False),
        sa.Column('back_secure_file_name', sa.String(), nullable=True),
        sa.Column('back_content_hash', sa.String(), nullable=True),
        sa.Column('back_file_size', sa.Integer(), nullable=True),
        sa.Column('device_fingerprint', sa.String(), nullable=False),
        sa.Column('capture_timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_encrypted', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('encryption_method', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='CAPTURED'),
        sa.Column('deletion_reason', sa.Text(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_kyc_live_captures_user_id'), 'kyc_live_captures', ['user_id'], unique=False)
    op.create_index(op.f('ix_kyc_live_captures_session_id'), 'kyc_live_captures', ['session_id'], unique=False)
    op.create_index('ix_kyc_live_captures_status_deleted', 'kyc_live_captures', ['status', 'deleted_at'], unique=False)

    op.create_table('kyc_audit_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('details', sa.JSON(), nullable=False),
        sa.Column('ip_address', sa.String(), nullable=True),
        sa.Column('user_agent', sa.String(), nullable=True),
        sa.Column('correlation_id', sa.String(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_kyc_audit_events_user_id'), 'kyc_audit_events', ['user_id'], unique=False)
    op.create_index('ix_kyc_audit_user_ts', 'kyc_audit_events', ['user_id', 'timestamp'], unique=False)


def downgrade() -> None:
    """Drop all KYC tables."""
    op.drop_index('ix_kyc_audit_user_ts', table_name='kyc_audit_events')
    op.drop_index(op.f('ix_kyc_audit_events_user_id'), table_name='kyc_audit_events')
    op.drop_table('kyc_audit_events')

    op.drop_index('ix_kyc_live_captures_status_deleted', table_name='kyc_live_captures')
    op.drop_index(op.f('ix_kyc_live_captures_session_id'), table_name='kyc_live_captures')
    op.drop_index(op.f('ix_kyc_live_captures_user_id'), table_name='kyc_live_captures')
    op.drop_table('kyc_live_captures')

    op.drop_index('ix_kyc_documents_status_deleted', table_name='kyc_documents')
    op.drop_index(op.f('ix_kyc_documents_session_id'), table_name='kyc_documents')
    op.drop_index(op.f('ix_kyc_documents_user_id'), table_name='kyc_documents')
    op.drop_table('kyc_documents')

    op.drop_index('ix_kyc_sessions_user_status', table_name='kyc_sessions')
    op.drop_index(op.f('ix_kyc_sessions_user_id'), table_name='kyc_sessions')
    op.drop_index(op.f('ix_kyc_sessions_session_id'), table_name='kyc_sessions')
    op.drop_table('kyc_sessions')

    op.drop_table('kyc_callback_events')

    op.drop_index('ix_kyc_records_status_updated', table_name='kyc_records')
    op.drop_index('ix_kyc_records_user_updated', table_name='kyc_records')
    op.drop_index(op.f('ix_kyc_records_reference_id'), table_name='kyc_records')
    op.drop_index(op.f('ix_kyc_records_user_id'), table_name='kyc_records')
    op.drop_table('kyc_records')

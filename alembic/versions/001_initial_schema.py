"""Initial schema - tenants, sync state and backed-up 3CX entities

Revision ID: 001_initial_schema
Revises:
Create Date: 2025-10-02

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
    ]


def _tenant_fk():
    return sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False)


def _file_columns():
    return [
        sa.Column('source_path', sa.String(), nullable=True),
        sa.Column('storage_path', sa.String(), nullable=True),
        sa.Column('mime_type', sa.String(), nullable=True),
        sa.Column('file_size_bytes', sa.BigInteger(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        'tenants',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        sa.Column('threecx_host', sa.String(), nullable=True),
        sa.Column('ssh_port', sa.Integer(), nullable=False, server_default='22'),
        sa.Column('ssh_user', sa.String(), nullable=True),
        sa.Column('ssh_password_encrypted', sa.String(), nullable=True),
        sa.Column('db_host', sa.String(), nullable=False, server_default='127.0.0.1'),
        sa.Column('db_port', sa.Integer(), nullable=False, server_default='5432'),
        sa.Column('db_name', sa.String(), nullable=True),
        sa.Column('db_user', sa.String(), nullable=True),
        sa.Column('db_password_encrypted', sa.String(), nullable=True),
        sa.Column('chat_files_path', sa.String(), nullable=True),
        sa.Column('recordings_path', sa.String(), nullable=True),
        sa.Column('voicemail_path', sa.String(), nullable=True),
        sa.Column('fax_path', sa.String(), nullable=True),
        sa.Column('meetings_path', sa.String(), nullable=True),
        sa.Column('backup_chats', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('backup_chat_media', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('backup_recordings', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('backup_voicemails', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('backup_faxes', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('backup_meetings', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('backup_cdr', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('sync_interval_seconds', sa.Integer(), nullable=False, server_default='300'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('sync_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('admin_emails', sa.JSON(), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_tenants_slug', 'tenants', ['slug'], unique=True)
    op.create_index('ix_tenants_is_active', 'tenants', ['is_active'])

    op.create_table(
        'sync_status',
        sa.Column('id', sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column('sync_type', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='idle'),
        sa.Column('last_synced_timestamp', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_success_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('last_full_reconcile_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('consecutive_failures', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_failures', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('items_synced', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('items_failed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'sync_type', name='uq_sync_status_tenant_type'),
    )
    op.create_index('ix_sync_status_tenant_id', 'sync_status', ['tenant_id'])

    op.create_table(
        'sync_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('sync_run_id', sa.String(), nullable=False),
        _tenant_fk(),
        sa.Column('sync_types', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='running'),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('items_synced', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('items_failed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_details', sa.JSON(), nullable=True),
    )
    op.create_index('ix_sync_logs_sync_run_id', 'sync_logs', ['sync_run_id'])
    op.create_index('ix_sync_logs_tenant_id', 'sync_logs', ['tenant_id'])

    op.create_table(
        'extensions',
        sa.Column('id', sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column('threecx_extension_id', sa.String(), nullable=True),
        sa.Column('extension_number', sa.String(), nullable=False),
        sa.Column('first_name', sa.String(), nullable=True),
        sa.Column('last_name', sa.String(), nullable=True),
        sa.Column('display_name', sa.String(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'extension_number', name='uq_extensions_tenant_number'),
    )

    op.create_table(
        'conversations',
        sa.Column('id', sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column('threecx_conversation_id', sa.String(), nullable=False),
        sa.Column('conversation_name', sa.String(), nullable=True),
        sa.Column('channel_type', sa.String(), nullable=False, server_default='internal'),
        sa.Column('is_external', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_group_chat', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('participant_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('message_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('first_message_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_message_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('source_provenance', sa.String(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'threecx_conversation_id', name='uq_conversations_tenant_source'),
    )

    op.create_table(
        'participants',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('conversation_id', sa.Integer(), sa.ForeignKey('conversations.id'), nullable=False),
        _tenant_fk(),
        sa.Column('extension_number', sa.String(), nullable=False),
        sa.Column('display_name', sa.String(), nullable=True),
        sa.Column('participant_type', sa.String(), nullable=True),
        sa.UniqueConstraint('conversation_id', 'extension_number', name='uq_participants_conversation_ext'),
    )
    op.create_index('ix_participants_tenant_extension', 'participants', ['tenant_id', 'extension_number'])

    op.create_table(
        'messages',
        sa.Column('id', sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column('conversation_id', sa.Integer(), sa.ForeignKey('conversations.id'), nullable=False),
        sa.Column('threecx_message_id', sa.String(), nullable=False),
        sa.Column('sender_extension', sa.String(), nullable=True),
        sa.Column('sender_name', sa.String(), nullable=True),
        sa.Column('sender_type', sa.String(), nullable=True),
        sa.Column('message_text', sa.Text(), nullable=True),
        sa.Column('message_type', sa.String(), nullable=False, server_default='text'),
        sa.Column('has_media', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('source_provenance', sa.String(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'threecx_message_id', name='uq_messages_tenant_source'),
    )
    op.create_index('ix_messages_conversation_id', 'messages', ['conversation_id'])
    op.create_index('ix_messages_sent_at', 'messages', ['sent_at'])

    op.create_table(
        'media_files',
        sa.Column('id', sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column('message_id', sa.Integer(), sa.ForeignKey('messages.id'), nullable=True),
        sa.Column('conversation_id', sa.Integer(), sa.ForeignKey('conversations.id'), nullable=True),
        sa.Column('file_name', sa.String(), nullable=False),
        sa.Column('stored_filename', sa.String(), nullable=False),
        sa.Column('source_path', sa.String(), nullable=True),
        sa.Column('content_hash', sa.String(), nullable=True),
        sa.Column('mime_type', sa.String(), nullable=True),
        sa.Column('file_type', sa.String(), nullable=True),
        sa.Column('file_size_bytes', sa.BigInteger(), nullable=True),
        sa.Column('storage_path', sa.String(), nullable=False),
        sa.Column('linked_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'storage_path', name='uq_media_files_tenant_path'),
        sa.UniqueConstraint('tenant_id', 'source_path', name='uq_media_files_tenant_source'),
    )
    op.create_index('ix_media_files_message_id', 'media_files', ['message_id'])

    op.create_table(
        'call_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column('threecx_call_id', sa.String(), nullable=False),
        sa.Column('caller_number', sa.String(), nullable=True),
        sa.Column('caller_name', sa.String(), nullable=True),
        sa.Column('callee_number', sa.String(), nullable=True),
        sa.Column('callee_name', sa.String(), nullable=True),
        sa.Column('extension', sa.String(), nullable=True),
        sa.Column('direction', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=True),
        sa.Column('ring_duration_seconds', sa.Integer(), nullable=True),
        sa.Column('talk_duration_seconds', sa.Integer(), nullable=True),
        sa.Column('total_duration_seconds', sa.Integer(), nullable=True),
        sa.Column('call_started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('call_answered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('call_ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('has_recording', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'threecx_call_id', name='uq_call_logs_tenant_source'),
    )
    op.create_index('ix_call_logs_call_started_at', 'call_logs', ['call_started_at'])

    op.create_table(
        'call_recordings',
        sa.Column('id', sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column('threecx_recording_id', sa.String(), nullable=False),
        sa.Column('extension', sa.String(), nullable=True),
        sa.Column('caller_number', sa.String(), nullable=True),
        sa.Column('callee_number', sa.String(), nullable=True),
        sa.Column('original_filename', sa.String(), nullable=True),
        sa.Column('recording_started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('recording_ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_seconds', sa.Integer(), nullable=True),
        *_file_columns(),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'threecx_recording_id', name='uq_call_recordings_tenant_source'),
    )

    op.create_table(
        'voicemails',
        sa.Column('id', sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column('threecx_voicemail_id', sa.String(), nullable=False),
        sa.Column('extension', sa.String(), nullable=True),
        sa.Column('original_filename', sa.String(), nullable=True),
        sa.Column('is_urgent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        *_file_columns(),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'threecx_voicemail_id', name='uq_voicemails_tenant_source'),
    )

    op.create_table(
        'faxes',
        sa.Column('id', sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column('threecx_fax_id', sa.String(), nullable=False),
        sa.Column('direction', sa.String(), nullable=True),
        sa.Column('remote_number', sa.String(), nullable=True),
        sa.Column('original_filename', sa.String(), nullable=True),
        sa.Column('fax_time', sa.DateTime(timezone=True), nullable=False),
        *_file_columns(),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'threecx_fax_id', name='uq_faxes_tenant_source'),
    )

    op.create_table(
        'meeting_recordings',
        sa.Column('id', sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column('threecx_meeting_id', sa.String(), nullable=False),
        sa.Column('meeting_name', sa.String(), nullable=True),
        sa.Column('host_extension', sa.String(), nullable=True),
        sa.Column('original_filename', sa.String(), nullable=True),
        sa.Column('has_video', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False),
        *_file_columns(),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'threecx_meeting_id', name='uq_meeting_recordings_tenant_source'),
    )

    op.create_table(
        'notification_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        _tenant_fk(),
        sa.Column('notification_type', sa.String(), nullable=False),
        sa.Column('sync_type', sa.String(), nullable=True),
        sa.Column('channel', sa.String(), nullable=False, server_default='email'),
        sa.Column('recipient', sa.String(), nullable=True),
        sa.Column('subject', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='sent'),
        sa.Column('metadata_json', sa.JSON(), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )
    op.create_index(
        'ix_notification_logs_rate_limit',
        'notification_logs',
        ['tenant_id', 'notification_type', 'sync_type', 'sent_at'],
    )


def downgrade() -> None:
    for table in (
        'notification_logs',
        'meeting_recordings',
        'faxes',
        'voicemails',
        'call_recordings',
        'call_logs',
        'media_files',
        'messages',
        'participants',
        'conversations',
        'extensions',
        'sync_logs',
        'sync_status',
        'tenants',
    ):
        op.drop_table(table)

"""initial schema: tenancy, users, tickets, history, clients, audit

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table('organizations',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table('auth_credentials',
        sa.Column('uid', sa.String(length=64), primary_key=True),
        sa.Column('email', sa.String(length=128), nullable=False),
        sa.Column('organization_id', sa.String(length=64), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_auth_credentials_email', 'auth_credentials', ['email'], unique=True)
    op.create_index('ix_auth_credentials_organization_id', 'auth_credentials', ['organization_id'])

    op.create_table('org_users',
        sa.Column('uid', sa.String(length=64), primary_key=True),
        sa.Column('email', sa.String(length=128), nullable=False),
        sa.Column('organization_id', sa.String(length=64), nullable=False),
        sa.Column('permissions', sa.JSON(), nullable=True),
        sa.Column('is_admin', sa.Boolean(), nullable=True),
        sa.Column('role', sa.String(length=32), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_org_users_email', 'org_users', ['email'])
    op.create_index('ix_org_users_organization_id', 'org_users', ['organization_id'])

    op.create_table('revoked_tokens',
        sa.Column('jti', sa.String(length=64), primary_key=True),
        sa.Column('uid', sa.String(length=64), nullable=True),
        sa.Column('revoked_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_uid', sa.String(length=64), nullable=False),
        sa.Column('organization_id', sa.String(length=64), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity', sa.String(length=64), nullable=True),
        sa.Column('entity_id', sa.String(length=64), nullable=True),
        sa.Column('perms_snapshot', sa.JSON(), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_audit_logs_actor_uid', 'audit_logs', ['actor_uid'])
    op.create_index('ix_audit_logs_organization_id', 'audit_logs', ['organization_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])

    op.create_table('clients',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.String(length=64), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('name', sa.String(length=160), nullable=True),
        sa.Column('company_name', sa.String(length=160), nullable=True),
        sa.Column('phone', sa.String(length=40), nullable=True),
        sa.Column('email', sa.String(length=128), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('nip', sa.String(length=32), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_clients_organization_id', 'clients', ['organization_id'])

    op.create_table('contacts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(length=160), nullable=False),
        sa.Column('phone', sa.String(length=40), nullable=False),
        sa.Column('email', sa.String(length=128), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_contacts_client_id', 'contacts', ['client_id'])

    op.create_table('service_items',
        sa.Column('doc_id', sa.Integer(), primary_key=True),
        sa.Column('tag_id', sa.String(length=128), nullable=False),
        sa.Column('organization_id', sa.String(length=64), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=True),
        sa.Column('contact_id', sa.Integer(), nullable=True),
        sa.Column('client_name', sa.String(length=160), nullable=True),
        sa.Column('client_phone', sa.String(length=40), nullable=True),
        sa.Column('client_email', sa.String(length=128), nullable=True),
        sa.Column('device_name', sa.String(length=160), nullable=False),
        sa.Column('device_model', sa.String(length=160), nullable=True),
        sa.Column('serial_number', sa.String(length=128), nullable=True),
        sa.Column('reported_fault', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('assigned_to', sa.String(length=64), nullable=True),
        sa.Column('assigned_to_name', sa.String(length=128), nullable=True),
        sa.Column('next_service_date', sa.Date(), nullable=True),
        sa.Column('date_received', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_updated', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.UniqueConstraint('organization_id', 'tag_id', name='uq_service_item_org_tag'),
    )
    op.create_index('ix_service_items_organization_id', 'service_items', ['organization_id'])
    op.create_index('ix_service_items_client_id', 'service_items', ['client_id'])
    op.create_index('ix_service_items_status', 'service_items', ['status'])
    op.create_index('ix_service_items_assigned_to', 'service_items', ['assigned_to'])
    op.create_index('ix_service_items_next_service_date', 'service_items', ['next_service_date'])
    op.create_index('ix_service_items_last_updated', 'service_items', ['last_updated'])

    op.create_table('service_notes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('service_item_id', sa.Integer(), sa.ForeignKey('service_items.doc_id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('user_email', sa.String(length=128), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_service_notes_service_item_id', 'service_notes', ['service_item_id'])

    op.create_table('history_entries',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('service_item_id', sa.Integer(), sa.ForeignKey('service_items.doc_id', ondelete='CASCADE'), nullable=False),
        sa.Column('organization_id', sa.String(length=64), nullable=False),
        sa.Column('service_item_tag', sa.String(length=128), nullable=False),
        sa.Column('service_item_name', sa.String(length=160), nullable=True),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('details', sa.Text(), nullable=False),
        sa.Column('user_email', sa.String(length=128), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_history_entries_service_item_id', 'history_entries', ['service_item_id'])
    # Backs the organization-wide feed (newest first)
    op.create_index('ix_history_org_timestamp', 'history_entries', ['organization_id', 'timestamp'])


def downgrade():
    op.drop_index('ix_history_org_timestamp', table_name='history_entries')
    op.drop_index('ix_history_entries_service_item_id', table_name='history_entries')
    op.drop_table('history_entries')
    op.drop_index('ix_service_notes_service_item_id', table_name='service_notes')
    op.drop_table('service_notes')
    for ix in ('last_updated', 'next_service_date', 'assigned_to', 'status', 'client_id', 'organization_id'):
        op.drop_index(f'ix_service_items_{ix}', table_name='service_items')
    op.drop_table('service_items')
    op.drop_index('ix_contacts_client_id', table_name='contacts')
    op.drop_table('contacts')
    op.drop_index('ix_clients_organization_id', table_name='clients')
    op.drop_table('clients')
    for ix in ('action', 'organization_id', 'actor_uid'):
        op.drop_index(f'ix_audit_logs_{ix}', table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_table('revoked_tokens')
    op.drop_index('ix_org_users_organization_id', table_name='org_users')
    op.drop_index('ix_org_users_email', table_name='org_users')
    op.drop_table('org_users')
    op.drop_index('ix_auth_credentials_organization_id', table_name='auth_credentials')
    op.drop_index('ix_auth_credentials_email', table_name='auth_credentials')
    op.drop_table('auth_credentials')
    op.drop_table('organizations')

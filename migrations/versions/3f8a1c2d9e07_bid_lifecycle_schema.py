"""bid_lifecycle_schema

Revision ID: 3f8a1c2d9e07
Revises:
Create Date: 2026-10-19 09:12:44.118204+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3f8a1c2d9e07'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # 1. tenants (no FKs)
    op.create_table('tenants',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('name', sa.String(length=200), nullable=False),
    sa.Column('slug', sa.String(length=50), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('slug')
    )
    op.create_index('idx_tenants_status', 'tenants', ['status'], unique=False)

    # 2. users
    op.create_table('users',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('tenant_id', sa.UUID(), nullable=False),
    sa.Column('email', sa.String(length=255), nullable=False),
    sa.Column('full_name', sa.String(length=200), nullable=True),
    sa.Column('role', sa.String(length=50), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('deleted_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('email')
    )
    op.create_index('idx_users_tenant', 'users', ['tenant_id'], unique=False)
    op.create_index('idx_users_role', 'users', ['role'], unique=False)

    # 3. directory
    op.create_table('companies',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('tenant_id', sa.UUID(), nullable=False),
    sa.Column('name', sa.String(length=200), nullable=False),
    sa.Column('email', sa.String(length=255), nullable=True),
    sa.Column('phone', sa.String(length=20), nullable=True),
    sa.Column('trade', sa.String(length=100), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.Column('deleted_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_companies_tenant', 'companies', ['tenant_id'], unique=False)
    op.create_index('idx_companies_email', 'companies', ['email'], unique=False)

    op.create_table('contacts',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('tenant_id', sa.UUID(), nullable=False),
    sa.Column('company_id', sa.UUID(), nullable=True),
    sa.Column('full_name', sa.String(length=200), nullable=False),
    sa.Column('email', sa.String(length=255), nullable=True),
    sa.Column('phone', sa.String(length=20), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ondelete='SET NULL'),
    sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_contacts_company', 'contacts', ['company_id'], unique=False)
    op.create_index('idx_contacts_email', 'contacts', ['email'], unique=False)

    # 4. bid packages + addenda
    op.create_table('bid_packages',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('tenant_id', sa.UUID(), nullable=False),
    sa.Column('project_id', sa.UUID(), nullable=False),
    sa.Column('title', sa.String(length=300), nullable=False),
    sa.Column('trade', sa.String(length=100), nullable=True),
    sa.Column('scope', sa.Text(), nullable=True),
    sa.Column('instructions', sa.Text(), nullable=True),
    sa.Column('due_at', sa.DateTime(), nullable=True),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('created_by', sa.UUID(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint("status IN ('draft','sent','open','closed','awarded','cancelled')", name='chk_bid_package_status'),
    sa.ForeignKeyConstraint(['created_by'], ['users.id'], ondelete='SET NULL'),
    sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_bid_packages_tenant_project_status', 'bid_packages', ['tenant_id', 'project_id', 'status'], unique=False)
    op.create_index('idx_bid_packages_project_due', 'bid_packages', ['project_id', 'due_at'], unique=False)

    op.create_table('bid_addenda',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('tenant_id', sa.UUID(), nullable=False),
    sa.Column('bid_package_id', sa.UUID(), nullable=False),
    sa.Column('number', sa.Integer(), nullable=False),
    sa.Column('title', sa.String(length=300), nullable=True),
    sa.Column('message', sa.Text(), nullable=True),
    sa.Column('issued_at', sa.DateTime(), nullable=True),
    sa.Column('created_by', sa.UUID(), nullable=True),
    sa.CheckConstraint('number >= 1', name='chk_bid_addendum_number'),
    sa.ForeignKeyConstraint(['bid_package_id'], ['bid_packages.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['created_by'], ['users.id'], ondelete='SET NULL'),
    sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('bid_package_id', 'number', name='uq_bid_addendum_package_number')
    )

    # 5. invites
    op.create_table('bid_invites',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('tenant_id', sa.UUID(), nullable=False),
    sa.Column('bid_package_id', sa.UUID(), nullable=False),
    sa.Column('company_id', sa.UUID(), nullable=True),
    sa.Column('contact_id', sa.UUID(), nullable=True),
    sa.Column('invite_email', sa.String(length=255), nullable=True),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('require_account', sa.Boolean(), nullable=False),
    sa.Column('sent_at', sa.DateTime(), nullable=True),
    sa.Column('last_viewed_at', sa.DateTime(), nullable=True),
    sa.Column('declined_at', sa.DateTime(), nullable=True),
    sa.Column('submitted_at', sa.DateTime(), nullable=True),
    sa.Column('created_by', sa.UUID(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint("status IN ('draft','sent','viewed','declined','submitted')", name='chk_bid_invite_status'),
    sa.CheckConstraint('company_id IS NOT NULL OR contact_id IS NOT NULL OR invite_email IS NOT NULL', name='chk_bid_invite_invitee'),
    sa.ForeignKeyConstraint(['bid_package_id'], ['bid_packages.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['contact_id'], ['contacts.id'], ondelete='SET NULL'),
    sa.ForeignKeyConstraint(['created_by'], ['users.id'], ondelete='SET NULL'),
    sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_bid_invites_package', 'bid_invites', ['bid_package_id', 'status'], unique=False)
    op.create_index('uq_bid_invites_package_company', 'bid_invites', ['bid_package_id', 'company_id'], unique=True, postgresql_where=sa.text('company_id IS NOT NULL'))
    op.create_index('uq_bid_invites_package_contact', 'bid_invites', ['bid_package_id', 'contact_id'], unique=True, postgresql_where=sa.text('contact_id IS NOT NULL'))
    op.create_index('uq_bid_invites_package_email', 'bid_invites', ['bid_package_id', 'invite_email'], unique=True, postgresql_where=sa.text('invite_email IS NOT NULL'))

    op.create_table('bid_addendum_acknowledgements',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('tenant_id', sa.UUID(), nullable=False),
    sa.Column('bid_addendum_id', sa.UUID(), nullable=False),
    sa.Column('bid_invite_id', sa.UUID(), nullable=False),
    sa.Column('acknowledged_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['bid_addendum_id'], ['bid_addenda.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['bid_invite_id'], ['bid_invites.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('bid_addendum_id', 'bid_invite_id', name='uq_bid_addendum_ack')
    )
    op.create_index('idx_bid_addendum_ack_invite', 'bid_addendum_acknowledgements', ['bid_invite_id'], unique=False)

    # 6. access grants (link tokens + linked accounts)
    op.create_table('bid_access_grants',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('tenant_id', sa.UUID(), nullable=False),
    sa.Column('bid_invite_id', sa.UUID(), nullable=False),
    sa.Column('channel', sa.String(length=10), nullable=False),
    sa.Column('state', sa.String(length=10), nullable=False),
    sa.Column('token_hash', sa.String(length=64), nullable=True),
    sa.Column('expires_at', sa.DateTime(), nullable=True),
    sa.Column('max_access_count', sa.Integer(), nullable=True),
    sa.Column('access_count', sa.Integer(), nullable=False),
    sa.Column('last_accessed_at', sa.DateTime(), nullable=True),
    sa.Column('linked_user_id', sa.UUID(), nullable=True),
    sa.Column('paused_at', sa.DateTime(), nullable=True),
    sa.Column('revoked_at', sa.DateTime(), nullable=True),
    sa.Column('created_by', sa.UUID(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint("channel IN ('link','account')", name='chk_access_grant_channel'),
    sa.CheckConstraint("state IN ('active','paused','revoked')", name='chk_access_grant_state'),
    sa.CheckConstraint(
        "(channel = 'link' AND token_hash IS NOT NULL AND linked_user_id IS NULL) OR "
        "(channel = 'account' AND linked_user_id IS NOT NULL AND token_hash IS NULL)",
        name='chk_access_grant_channel_payload',
    ),
    sa.ForeignKeyConstraint(['bid_invite_id'], ['bid_invites.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['created_by'], ['users.id'], ondelete='SET NULL'),
    sa.ForeignKeyConstraint(['linked_user_id'], ['users.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('token_hash')
    )
    op.create_index('idx_access_grants_invite_channel_state', 'bid_access_grants', ['bid_invite_id', 'channel', 'state'], unique=False)
    op.create_index('uq_access_grants_live_account', 'bid_access_grants', ['bid_invite_id', 'linked_user_id'], unique=True, postgresql_where=sa.text("channel = 'account' AND state != 'revoked'"))

    # 7. submissions
    op.create_table('bid_submissions',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('tenant_id', sa.UUID(), nullable=False),
    sa.Column('bid_invite_id', sa.UUID(), nullable=False),
    sa.Column('version', sa.Integer(), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('is_current', sa.Boolean(), nullable=False),
    sa.Column('is_awarded', sa.Boolean(), nullable=False),
    sa.Column('total_cents', sa.BigInteger(), nullable=True),
    sa.Column('currency', sa.String(length=3), nullable=False),
    sa.Column('valid_until', sa.Date(), nullable=True),
    sa.Column('lead_time_days', sa.Integer(), nullable=True),
    sa.Column('duration_days', sa.Integer(), nullable=True),
    sa.Column('start_available_on', sa.Date(), nullable=True),
    sa.Column('exclusions', sa.Text(), nullable=True),
    sa.Column('clarifications', sa.Text(), nullable=True),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.Column('submitted_by_name', sa.String(length=200), nullable=True),
    sa.Column('submitted_by_email', sa.String(length=255), nullable=True),
    sa.Column('submitted_at', sa.DateTime(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint('version >= 1', name='chk_bid_submission_version'),
    sa.CheckConstraint("status IN ('submitted','revised')", name='chk_bid_submission_status'),
    sa.CheckConstraint('total_cents IS NULL OR total_cents >= 0', name='chk_bid_submission_total'),
    sa.ForeignKeyConstraint(['bid_invite_id'], ['bid_invites.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('bid_invite_id', 'version', name='uq_bid_submission_version')
    )
    op.create_index('idx_bid_submissions_invite', 'bid_submissions', ['bid_invite_id'], unique=False)
    op.create_index('uq_bid_submissions_current', 'bid_submissions', ['bid_invite_id'], unique=True, postgresql_where=sa.text('is_current IS true'))

    # 8. awards
    op.create_table('bid_awards',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('tenant_id', sa.UUID(), nullable=False),
    sa.Column('bid_package_id', sa.UUID(), nullable=False),
    sa.Column('awarded_submission_id', sa.UUID(), nullable=False),
    sa.Column('awarded_commitment_id', sa.Text(), nullable=True),
    sa.Column('awarded_by', sa.UUID(), nullable=True),
    sa.Column('awarded_at', sa.DateTime(), nullable=True),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.ForeignKeyConstraint(['awarded_by'], ['users.id'], ondelete='SET NULL'),
    sa.ForeignKeyConstraint(['awarded_submission_id'], ['bid_submissions.id'], ),
    sa.ForeignKeyConstraint(['bid_package_id'], ['bid_packages.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('bid_package_id')
    )

    # 9. attachments + audit
    op.create_table('file_links',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('tenant_id', sa.UUID(), nullable=False),
    sa.Column('entity_type', sa.String(length=50), nullable=False),
    sa.Column('entity_id', sa.UUID(), nullable=False),
    sa.Column('file_id', sa.UUID(), nullable=False),
    sa.Column('created_by', sa.UUID(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint("entity_type IN ('bid_package','bid_addendum','bid_submission')", name='chk_file_link_entity_type'),
    sa.ForeignKeyConstraint(['created_by'], ['users.id'], ondelete='SET NULL'),
    sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('entity_type', 'entity_id', 'file_id', name='uq_file_link_entity_file')
    )
    op.create_index('idx_file_links_entity', 'file_links', ['entity_type', 'entity_id'], unique=False)

    op.create_table('audit_logs',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('tenant_id', sa.UUID(), nullable=False),
    sa.Column('actor_id', sa.UUID(), nullable=True),
    sa.Column('actor_email', sa.String(length=255), nullable=True),
    sa.Column('action', sa.String(length=100), nullable=False),
    sa.Column('entity_type', sa.String(length=50), nullable=False),
    sa.Column('entity_id', sa.UUID(), nullable=False),
    sa.Column('before_state', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('after_state', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('changed_fields', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('request_id', sa.String(length=64), nullable=True),
    sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['actor_id'], ['users.id'], ),
    sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_audit_tenant', 'audit_logs', ['tenant_id'], unique=False)
    op.create_index('idx_audit_entity', 'audit_logs', ['entity_type', 'entity_id'], unique=False)
    op.create_index('idx_audit_actor', 'audit_logs', ['actor_id'], unique=False)
    op.create_index('idx_audit_created', 'audit_logs', [sa.text('created_at DESC')], unique=False)


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('file_links')
    op.drop_table('bid_awards')
    op.drop_table('bid_submissions')
    op.drop_table('bid_access_grants')
    op.drop_table('bid_addendum_acknowledgements')
    op.drop_table('bid_invites')
    op.drop_table('bid_addenda')
    op.drop_table('bid_packages')
    op.drop_table('contacts')
    op.drop_table('companies')
    op.drop_table('users')
    op.drop_table('tenants')

"""Create ad board tables (clients, crm_connections, weekly_ad_snapshots, ad_creatives, leads)

Revision ID: 20260301_000001
Revises:
Create Date: 2026-03-01 09:00:00.000000

WHAT:
    Initial schema for the ad performance board:
    - clients: tenant ad account id + encrypted Meta token
    - crm_connections: CRM location credentials per client
    - weekly_ad_snapshots: one row per (client, ad, week)
    - ad_creatives: cached Meta creatives (7-day TTL)
    - leads: CRM funnel entries attributed to ads by name

WHY:
    Weekly snapshots are upserted on (client_id, ad_id, week_start); the
    unique constraint is what keeps re-syncs from duplicating weeks.

REFERENCES:
    - adboard/models.py
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20260301_000001'
down_revision = None
branch_labels = None
depends_on = None


LEAD_STATUSES = (
    'new', 'in_progress', 'estimate_set', 'virtual_quote', 'proposal_presented',
    'job_booked', 'unqualified', 'estimate_canceled', 'job_lost',
)
CREATIVE_TYPES = ('video', 'carousel', 'image', 'link', 'other')


def upgrade() -> None:
    op.create_table(
        'clients',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('fb_ad_account_id', sa.String(), nullable=True),
        sa.Column('meta_access_token_enc', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'crm_connections',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('client_id', sa.String(), nullable=False),
        sa.Column('location_id', sa.String(), nullable=False, unique=True),
        sa.Column('api_token_enc', sa.Text(), nullable=False),
        sa.Column('pipeline_id', sa.String(), nullable=True),
        sa.Column('amount_custom_field_id', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_synced_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_crm_connections_client_id', 'crm_connections', ['client_id'])

    op.create_table(
        'weekly_ad_snapshots',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('client_id', sa.String(), nullable=False),
        sa.Column('ad_account_id', sa.String(), nullable=True),
        sa.Column('campaign_id', sa.String(), nullable=True),
        sa.Column('campaign_name', sa.String(), nullable=True),
        sa.Column('ad_set_id', sa.String(), nullable=True),
        sa.Column('ad_set_name', sa.String(), nullable=True),
        sa.Column('ad_id', sa.String(), nullable=False),
        sa.Column('ad_name', sa.String(), nullable=True),
        sa.Column('objective', sa.String(), nullable=True),
        sa.Column('creative_id', sa.String(), nullable=True),
        sa.Column('creative_name', sa.String(), nullable=True),
        sa.Column('primary_text', sa.Text(), nullable=True),
        sa.Column('headline', sa.Text(), nullable=True),
        sa.Column('creative_raw', sa.JSON(), nullable=True),
        sa.Column('lead_form_id', sa.String(), nullable=True),
        sa.Column('lead_form_name', sa.String(), nullable=True),
        sa.Column('metrics', sa.JSON(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=True),
        sa.Column('week_number', sa.Integer(), nullable=True),
        sa.Column('week_start', sa.Date(), nullable=False),
        sa.Column('week_end', sa.Date(), nullable=False),
        sa.Column('saved_at', sa.DateTime(), nullable=False),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('client_id', 'ad_id', 'week_start', name='uq_weekly_snapshot_client_ad_week'),
    )
    op.create_index('ix_weekly_ad_snapshots_client_id', 'weekly_ad_snapshots', ['client_id'])
    op.create_index(
        'ix_weekly_snapshot_client_range', 'weekly_ad_snapshots', ['client_id', 'week_start', 'week_end']
    )

    op.create_table(
        'ad_creatives',
        sa.Column('creative_id', sa.String(), primary_key=True),
        sa.Column('client_id', sa.String(), nullable=True),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('primary_text', sa.Text(), nullable=True),
        sa.Column('headline', sa.Text(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('body', sa.Text(), nullable=True),
        sa.Column('title', sa.Text(), nullable=True),
        sa.Column('thumbnail_url', sa.Text(), nullable=True),
        sa.Column('image_url', sa.Text(), nullable=True),
        sa.Column('image_hash', sa.String(), nullable=True),
        sa.Column('video_id', sa.String(), nullable=True),
        sa.Column('videos', sa.JSON(), nullable=True),
        sa.Column('child_attachments', sa.JSON(), nullable=True),
        sa.Column('call_to_action', sa.JSON(), nullable=True),
        sa.Column('creative_type', sa.Enum(*CREATIVE_TYPES, name='creative_type'), nullable=False),
        sa.Column('object_story_spec', sa.JSON(), nullable=True),
        sa.Column('object_story_id', sa.String(), nullable=True),
        sa.Column('raw_data', sa.JSON(), nullable=True),
        sa.Column('last_fetched_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_ad_creatives_client_id', 'ad_creatives', ['client_id'])

    op.create_table(
        'leads',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('client_id', sa.String(), nullable=False),
        sa.Column('lead_date', sa.Date(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('zip_code', sa.String(), nullable=True),
        sa.Column('service', sa.String(), nullable=True),
        sa.Column('ad_name', sa.String(), nullable=True),
        sa.Column('ad_set_name', sa.String(), nullable=True),
        sa.Column('status', sa.Enum(*LEAD_STATUSES, name='lead_status'), nullable=False),
        sa.Column('unqualified_lead_reason', sa.String(), nullable=True),
        sa.Column('proposal_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('job_booked_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('lead_score', sa.Float(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_leads_client_id', 'leads', ['client_id'])
    op.create_index('ix_leads_email', 'leads', ['email'])
    op.create_index('ix_leads_client_date', 'leads', ['client_id', 'lead_date'])


def downgrade() -> None:
    op.drop_index('ix_leads_client_date', table_name='leads')
    op.drop_index('ix_leads_email', table_name='leads')
    op.drop_index('ix_leads_client_id', table_name='leads')
    op.drop_table('leads')

    op.drop_index('ix_ad_creatives_client_id', table_name='ad_creatives')
    op.drop_table('ad_creatives')

    op.drop_index('ix_weekly_snapshot_client_range', table_name='weekly_ad_snapshots')
    op.drop_index('ix_weekly_ad_snapshots_client_id', table_name='weekly_ad_snapshots')
    op.drop_table('weekly_ad_snapshots')

    op.drop_index('ix_crm_connections_client_id', table_name='crm_connections')
    op.drop_table('crm_connections')

    op.drop_table('clients')

    sa.Enum(name='lead_status').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='creative_type').drop(op.get_bind(), checkfirst=True)

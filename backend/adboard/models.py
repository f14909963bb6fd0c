"""SQLAlchemy ORM models and enums.

This module defines the ad board schema. Identifiers are strings: Meta ids
are numeric strings and client ids come from the tenant directory, so the
same schema runs on PostgreSQL in production and SQLite in tests.
"""

import enum
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import declarative_base

from adboard.utils.dates import utcnow


# Single Base used by the entire application
Base = declarative_base()


def _uuid_str() -> str:
    return str(uuid.uuid4())


# Enums ---------------------------------------------------------

class LeadStatusEnum(str, enum.Enum):
    new = "new"
    in_progress = "in_progress"
    estimate_set = "estimate_set"
    virtual_quote = "virtual_quote"
    proposal_presented = "proposal_presented"
    job_booked = "job_booked"
    unqualified = "unqualified"
    estimate_canceled = "estimate_canceled"
    job_lost = "job_lost"


class CreativeTypeEnum(str, enum.Enum):
    video = "video"
    carousel = "carousel"
    image = "image"
    link = "link"
    other = "other"


# Statuses allowed to carry a proposal amount
PROPOSAL_AMOUNT_STATUSES = frozenset({
    LeadStatusEnum.estimate_set,
    LeadStatusEnum.virtual_quote,
    LeadStatusEnum.proposal_presented,
    LeadStatusEnum.job_lost,
})

# Statuses allowed to carry a booked job amount
JOB_BOOKED_AMOUNT_STATUSES = frozenset({LeadStatusEnum.job_booked})


# Tenant / credentials --------------------------------------------

class Client(Base):
    """Tenant row read by the sync scheduler.

    Client CRUD lives outside this service; only the ad account id and the
    encrypted Meta token are consumed here.
    """
    __tablename__ = "clients"

    id = Column(String, primary_key=True, default=_uuid_str)
    name = Column(String, nullable=False)
    fb_ad_account_id = Column(String, nullable=True)
    meta_access_token_enc = Column(Text, nullable=True)  # Fernet ciphertext
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    def __str__(self):
        return self.name


class CrmConnection(Base):
    """CRM (LeadConnector) location credentials for one client."""
    __tablename__ = "crm_connections"

    id = Column(String, primary_key=True, default=_uuid_str)
    client_id = Column(String, nullable=False, index=True)
    location_id = Column(String, nullable=False, unique=True)
    api_token_enc = Column(Text, nullable=False)  # Fernet ciphertext
    pipeline_id = Column(String, nullable=True)
    # Contact custom field holding the estimate amount
    amount_custom_field_id = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_synced_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)


# Ad metrics ------------------------------------------------------

class WeeklyAdSnapshot(Base):
    """One row per (client, ad, calendar week).

    Metrics are the platform's own weekly aggregates for that single
    Monday-Sunday window, never cumulative. Re-syncing a week overwrites the
    row (see services/snapshot_store.upsert_many).
    """
    __tablename__ = "weekly_ad_snapshots"
    __table_args__ = (
        UniqueConstraint("client_id", "ad_id", "week_start", name="uq_weekly_snapshot_client_ad_week"),
        Index("ix_weekly_snapshot_client_range", "client_id", "week_start", "week_end"),
    )

    id = Column(String, primary_key=True, default=_uuid_str)
    client_id = Column(String, nullable=False, index=True)
    ad_account_id = Column(String, nullable=True)

    campaign_id = Column(String, nullable=True)
    campaign_name = Column(String, nullable=True)
    ad_set_id = Column(String, nullable=True)
    ad_set_name = Column(String, nullable=True)
    ad_id = Column(String, nullable=False)
    ad_name = Column(String, nullable=True)
    objective = Column(String, nullable=True)

    # Creative reference (full metadata lives in ad_creatives)
    creative_id = Column(String, nullable=True)
    creative_name = Column(String, nullable=True)
    primary_text = Column(Text, nullable=True)
    headline = Column(Text, nullable=True)
    creative_raw = Column(JSON, nullable=True)

    lead_form_id = Column(String, nullable=True)
    lead_form_name = Column(String, nullable=True)

    # Platform-reported weekly values, see services/meta_insights_service.normalize_insight_row
    metrics = Column(JSON, nullable=False, default=dict)

    year = Column(Integer, nullable=True)
    week_number = Column(Integer, nullable=True)
    week_start = Column(Date, nullable=False)
    week_end = Column(Date, nullable=False)

    saved_at = Column(DateTime, default=utcnow, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    def metric(self, key: str) -> float:
        value = (self.metrics or {}).get(key)
        return float(value) if value is not None else 0.0


class CreativeRecord(Base):
    """Cached copy of a Meta ad creative.

    Fresh while last_fetched_at is younger than the cache TTL (7 days);
    stale rows are still served when a refetch fails.
    """
    __tablename__ = "ad_creatives"

    creative_id = Column(String, primary_key=True)
    client_id = Column(String, nullable=True, index=True)

    name = Column(String, nullable=True)
    primary_text = Column(Text, nullable=True)
    headline = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    body = Column(Text, nullable=True)
    title = Column(Text, nullable=True)
    thumbnail_url = Column(Text, nullable=True)
    image_url = Column(Text, nullable=True)
    image_hash = Column(String, nullable=True)
    video_id = Column(String, nullable=True)
    videos = Column(JSON, nullable=True)
    child_attachments = Column(JSON, nullable=True)
    call_to_action = Column(JSON, nullable=True)
    creative_type = Column(
        Enum(CreativeTypeEnum, name="creative_type", values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
        default=CreativeTypeEnum.other,
    )
    object_story_spec = Column(JSON, nullable=True)
    object_story_id = Column(String, nullable=True)
    raw_data = Column(JSON, nullable=True)

    last_fetched_at = Column(DateTime, nullable=False, default=utcnow)


# Leads -----------------------------------------------------------

class Lead(Base):
    """CRM funnel entry attributed to an ad by name.

    There is no foreign key to weekly_ad_snapshots: the report engine joins on
    ad_name (and ad_set_name when present).
    """
    __tablename__ = "leads"
    __table_args__ = (
        Index("ix_leads_client_date", "client_id", "lead_date"),
    )

    id = Column(String, primary_key=True, default=_uuid_str)
    client_id = Column(String, nullable=False, index=True)
    lead_date = Column(Date, nullable=False)

    name = Column(String, nullable=True)
    email = Column(String, nullable=True, index=True)
    phone = Column(String, nullable=True)
    zip_code = Column(String, nullable=True)
    service = Column(String, nullable=True)

    ad_name = Column(String, nullable=True)
    ad_set_name = Column(String, nullable=True)

    status = Column(
        Enum(LeadStatusEnum, name="lead_status", values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
        default=LeadStatusEnum.new,
    )
    unqualified_lead_reason = Column(String, nullable=True)
    proposal_amount = Column(Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    job_booked_amount = Column(Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    lead_score = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)

    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


def enforce_amount_rules(lead: Lead) -> Lead:
    """Zero amounts (and the disqualification reason) the status does not allow."""
    status = LeadStatusEnum(lead.status) if lead.status is not None else LeadStatusEnum.new

    if status not in PROPOSAL_AMOUNT_STATUSES:
        lead.proposal_amount = 0
    elif lead.proposal_amount is None:
        lead.proposal_amount = 0

    if status not in JOB_BOOKED_AMOUNT_STATUSES:
        lead.job_booked_amount = 0
    elif lead.job_booked_amount is None:
        lead.job_booked_amount = 0

    if status != LeadStatusEnum.unqualified:
        lead.unqualified_lead_reason = None

    return lead


@event.listens_for(Lead, "before_insert")
@event.listens_for(Lead, "before_update")
def _lead_amount_guard(mapper, connection, target):
    enforce_amount_rules(target)

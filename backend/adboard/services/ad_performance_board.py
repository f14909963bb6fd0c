"""Ad Performance Board - weekly snapshots x CRM leads report.

WHAT:
    Builds the pivot table behind the ad board: one row per campaign, ad set
    or ad, with Meta delivery metrics next to CRM funnel counts and the
    costs derived from both.

WHY:
    Leads have no foreign key to ads. They carry the ad name the lead form
    reported, so attribution goes through ad name -> campaign / ad set maps
    built from the snapshots of the same report. Grouping happens on names,
    not ids, because that is what both sides share.

PIPELINE:
    1. Load snapshots and leads for the client and range
    2. Collect available zip codes / services (before filtering)
    3. Filter leads (status, amount, zip, service, score) and ads (names)
    4. Build attribution maps from the filtered snapshots
    5. Sum snapshot metrics per group
    6. Count leads per group (groups may come from leads alone)
    7. Project requested columns, sort by spend, compute averages

REFERENCES:
    - adboard/services/report_columns.py (columns and metric math)
    - adboard/services/lead_attribution.py (name-based attribution)
    - adboard/routers/ad_performance.py (HTTP surface)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Pattern, Sequence, Set, Tuple

from sqlalchemy.orm import Session

from adboard.errors import ValidationError
from adboard.models import CreativeRecord, Lead, LeadStatusEnum, WeeklyAdSnapshot
from adboard.schemas import GroupBy, ReportFilters, ReportRequest, ReportResponse
from adboard.services.lead_attribution import (
    UNKNOWN_AD,
    UNKNOWN_AD_SET,
    UNKNOWN_CAMPAIGN,
    AttributionMaps,
)
from adboard.services.lead_service import LeadService
from adboard.services.report_columns import (
    ADDITIVE_METRICS,
    AVERAGED_RATIO_METRICS,
    ReportColumn,
    averages,
    empty_averages,
    parse_columns,
    project,
)
from adboard.services.snapshot_store import SnapshotStore
from adboard.utils.dates import parse_date

logger = logging.getLogger(__name__)


_STATUS_COUNTERS = {
    LeadStatusEnum.new: "new_leads",
    LeadStatusEnum.in_progress: "in_progress",
    LeadStatusEnum.estimate_set: "estimate_sets",
    LeadStatusEnum.virtual_quote: "virtual_quotes",
    LeadStatusEnum.proposal_presented: "proposals_presented",
    LeadStatusEnum.unqualified: "unqualified",
    LeadStatusEnum.estimate_canceled: "estimates_canceled",
    LeadStatusEnum.job_lost: "jobs_lost",
}

_FUNNEL_FIELDS = (
    "leads",
    "new_leads",
    "in_progress",
    "estimate_sets",
    "virtual_quotes",
    "proposals_presented",
    "jobs_booked",
    "unqualified",
    "estimates_canceled",
    "jobs_lost",
)


@dataclass
class GroupAccumulator:
    """Running sums for one report row. Never returned as-is; see project()."""

    key: Tuple[str, ...]
    campaign_name: Optional[str] = None
    ad_set_name: Optional[str] = None
    ad_name: Optional[str] = None
    creative: Optional[Dict[str, Any]] = None

    totals: Dict[str, float] = field(default_factory=dict)
    ratio_sums: Dict[str, float] = field(default_factory=dict)
    record_count: int = 0

    leads: int = 0
    new_leads: int = 0
    in_progress: int = 0
    estimate_sets: int = 0
    virtual_quotes: int = 0
    proposals_presented: int = 0
    jobs_booked: int = 0
    unqualified: int = 0
    estimates_canceled: int = 0
    jobs_lost: int = 0
    revenue: float = 0.0

    services: Set[str] = field(default_factory=set)
    zip_codes: Set[str] = field(default_factory=set)

    @property
    def spend(self) -> float:
        return self.totals.get("spend", 0.0)

    def add_snapshot(self, snapshot: WeeklyAdSnapshot) -> None:
        for key in ADDITIVE_METRICS.values():
            self.totals[key] = self.totals.get(key, 0.0) + snapshot.metric(key)
        for key in AVERAGED_RATIO_METRICS.values():
            self.ratio_sums[key] = self.ratio_sums.get(key, 0.0) + snapshot.metric(key)
        self.record_count += 1

    def add_lead(self, lead: Lead) -> None:
        status = LeadStatusEnum(lead.status)
        job_booked_amount = float(lead.job_booked_amount or 0)

        self.leads += 1
        counter = _STATUS_COUNTERS.get(status)
        if counter:
            setattr(self, counter, getattr(self, counter) + 1)
        if status == LeadStatusEnum.job_booked or job_booked_amount > 0:
            self.jobs_booked += 1
        if job_booked_amount > 0:
            self.revenue += job_booked_amount

        if lead.service:
            self.services.add(lead.service)
        if lead.zip_code:
            self.zip_codes.add(lead.zip_code)

    def merge(self, other: "GroupAccumulator") -> None:
        for key, value in other.totals.items():
            self.totals[key] = self.totals.get(key, 0.0) + value
        for key, value in other.ratio_sums.items():
            self.ratio_sums[key] = self.ratio_sums.get(key, 0.0) + value
        self.record_count += other.record_count
        for name in _FUNNEL_FIELDS:
            setattr(self, name, getattr(self, name) + getattr(other, name))
        self.revenue += other.revenue


# =============================================================================
# FILTERS
# =============================================================================

def _name_patterns(terms: Optional[Sequence[str]]) -> Optional[List[Pattern]]:
    if not terms:
        return None
    return [re.compile(re.escape(term), re.IGNORECASE) for term in terms]


def _matches(value: Optional[str], patterns: Optional[List[Pattern]]) -> bool:
    if patterns is None:
        return True
    if not value:
        return False
    return any(pattern.search(value) for pattern in patterns)


def filter_leads(leads: Iterable[Lead], filters: ReportFilters) -> List[Lead]:
    result = list(leads)

    if filters.estimate_set_leads:
        result = [lead for lead in result if LeadStatusEnum(lead.status) == LeadStatusEnum.estimate_set]
    if filters.job_booked_leads:
        result = [lead for lead in result if float(lead.job_booked_amount or 0) > 0]
    if filters.zip_code:
        zip_codes = set(filters.zip_code)
        result = [lead for lead in result if lead.zip_code in zip_codes]
    if filters.service_type:
        services = set(filters.service_type)
        result = [lead for lead in result if lead.service in services]
    if filters.lead_score is not None:
        low, high = filters.lead_score.min, filters.lead_score.max
        result = [
            lead for lead in result
            if lead.lead_score is not None
            and (low is None or lead.lead_score >= low)
            and (high is None or lead.lead_score <= high)
        ]
    return result


def filter_snapshots(snapshots: Iterable[WeeklyAdSnapshot], filters: ReportFilters) -> List[WeeklyAdSnapshot]:
    campaigns = _name_patterns(filters.campaign_name)
    ad_sets = _name_patterns(filters.ad_set_name)
    ads = _name_patterns(filters.ad_name)
    return [
        snapshot for snapshot in snapshots
        if _matches(snapshot.campaign_name, campaigns)
        and _matches(snapshot.ad_set_name, ad_sets)
        and _matches(snapshot.ad_name, ads)
    ]


# =============================================================================
# REPORT
# =============================================================================

def _creative_payload(snapshot: WeeklyAdSnapshot, cached: Optional[CreativeRecord]) -> Dict[str, Any]:
    """Snapshot creative reference, overlaid with the cached creative when present."""
    payload: Dict[str, Any] = {
        "id": snapshot.creative_id,
        "name": snapshot.creative_name,
        "primaryText": snapshot.primary_text,
        "headline": snapshot.headline,
    }
    if cached is None:
        return payload

    payload.update({
        "name": cached.name or snapshot.creative_name,
        "primaryText": cached.primary_text or snapshot.primary_text,
        "headline": cached.headline or snapshot.headline,
        "description": cached.description,
        "body": cached.body,
        "thumbnailUrl": cached.thumbnail_url,
        "imageUrl": cached.image_url,
        "imageHash": cached.image_hash,
        "videoId": cached.video_id,
        "creativeType": getattr(cached.creative_type, "value", cached.creative_type),
        "videos": cached.videos or [],
        "childAttachments": cached.child_attachments or [],
        "callToAction": cached.call_to_action,
    })
    return payload


class AdPerformanceBoard:
    """Report engine. Read-only over snapshots, leads and cached creatives.

    Usage:
        ```python
        board = AdPerformanceBoard(db)
        response = board.generate(ReportRequest.model_validate(payload))
        ```
    """

    def __init__(self, db: Session):
        self.db = db

    def _load_creatives(self, snapshots: List[WeeklyAdSnapshot]) -> Dict[str, CreativeRecord]:
        ids = sorted({s.creative_id for s in snapshots if s.creative_id})
        if not ids:
            return {}
        rows = self.db.query(CreativeRecord).filter(CreativeRecord.creative_id.in_(ids)).all()
        return {row.creative_id: row for row in rows}

    @staticmethod
    def _snapshot_group(snapshot: WeeklyAdSnapshot, group_by: GroupBy) -> GroupAccumulator:
        campaign = snapshot.campaign_name or UNKNOWN_CAMPAIGN
        if group_by == GroupBy.campaign:
            return GroupAccumulator(key=(campaign,), campaign_name=campaign)

        ad_set = snapshot.ad_set_name or UNKNOWN_AD_SET
        if group_by == GroupBy.adset:
            return GroupAccumulator(key=(campaign, ad_set), campaign_name=campaign, ad_set_name=ad_set)

        ad = snapshot.ad_name or UNKNOWN_AD
        return GroupAccumulator(
            key=(campaign, ad_set, ad), campaign_name=campaign, ad_set_name=ad_set, ad_name=ad,
        )

    @staticmethod
    def _lead_group(campaign: str, ad_set: str, ad_name: str, group_by: GroupBy) -> GroupAccumulator:
        if group_by == GroupBy.campaign:
            return GroupAccumulator(key=(campaign,), campaign_name=campaign)
        if group_by == GroupBy.adset:
            return GroupAccumulator(key=(campaign, ad_set), campaign_name=campaign, ad_set_name=ad_set)
        return GroupAccumulator(
            key=(campaign, ad_set, ad_name), campaign_name=campaign, ad_set_name=ad_set, ad_name=ad_name,
        )

    def generate(self, request: ReportRequest) -> ReportResponse:
        """Build the report for one client and date range.

        Raises:
            ValidationError: Bad dates, start after end, or unknown columns
        """
        filters = request.filters
        start = parse_date(filters.start_date)
        end = parse_date(filters.end_date)
        if start > end:
            raise ValidationError("startDate must be on or before endDate")
        columns = parse_columns(request.columns)
        group_by = request.group_by

        snapshots = SnapshotStore(self.db).get_by_date_range(request.client_id, start, end)
        if not snapshots:
            logger.info("[AD_BOARD] No snapshots for client %s between %s and %s", request.client_id, start, end)
            return ReportResponse(rows=[], averages=empty_averages())

        all_leads = LeadService(self.db).get_by_date_range(request.client_id, start, end)
        available_zip_codes = sorted({lead.zip_code for lead in all_leads if lead.zip_code})
        available_services = sorted({lead.service for lead in all_leads if lead.service})

        leads = filter_leads(all_leads, filters)
        snapshots = filter_snapshots(snapshots, filters)
        maps = AttributionMaps.from_snapshots(snapshots)
        creatives = self._load_creatives(snapshots) if group_by == GroupBy.ad else {}

        groups: Dict[Tuple[str, ...], GroupAccumulator] = {}

        for snapshot in snapshots:
            candidate = self._snapshot_group(snapshot, group_by)
            group = groups.setdefault(candidate.key, candidate)
            if group_by == GroupBy.ad and group.creative is None and snapshot.creative_id:
                group.creative = _creative_payload(snapshot, creatives.get(snapshot.creative_id))
            group.add_snapshot(snapshot)

        dropped = 0
        for lead in leads:
            resolved = maps.resolve(lead)
            if resolved is None:
                dropped += 1
                continue
            campaign, ad_set = resolved
            candidate = self._lead_group(campaign, ad_set, lead.ad_name, group_by)
            groups.setdefault(candidate.key, candidate).add_lead(lead)

        ordered = sorted(groups.values(), key=lambda g: g.spend, reverse=True)
        rows = []
        for group in ordered:
            row = project(group, columns)
            if group.creative is not None:
                row["creative"] = group.creative
            rows.append(row)

        overall = GroupAccumulator(key=())
        for group in ordered:
            overall.merge(group)

        logger.info(
            "[AD_BOARD] Client %s: %d rows from %d snapshots and %d leads (%d unattributed), group_by=%s",
            request.client_id, len(rows), len(snapshots), len(leads), dropped, group_by.value,
        )

        return ReportResponse(
            rows=rows,
            averages=averages(overall),
            available_zip_codes=available_zip_codes,
            available_service_types=available_services,
        )

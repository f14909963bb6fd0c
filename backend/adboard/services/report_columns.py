"""Ad performance board column registry.

WHAT:
    Every column a report can request, and how its value is read from a
    GroupAccumulator (see ad_performance_board.py).

WHY:
    The board lets users pick columns freely. One table keeps the accepted
    names, the metric math and the projection in a single place, so an
    unknown column is rejected instead of silently returning nothing.

METRIC RULES:
    - Additive platform metrics are summed across weekly snapshots
    - fb_ctr / fb_cpc / fb_cpm / ... are recomputed from the summed totals
    - fb_avg_* are the mean of the platform's own weekly ratios
    - Any division by zero yields None; ratios are rounded to 2 decimals
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from adboard.errors import ValidationError

if TYPE_CHECKING:
    from adboard.services.ad_performance_board import GroupAccumulator


class ReportColumn(str, enum.Enum):
    # Dimensions
    campaignName = "campaignName"
    adSetName = "adSetName"
    adName = "adName"
    service = "service"
    zipCode = "zipCode"

    # Platform totals
    fb_spend = "fb_spend"
    fb_impressions = "fb_impressions"
    fb_clicks = "fb_clicks"
    fb_unique_clicks = "fb_unique_clicks"
    fb_reach = "fb_reach"
    fb_post_engagements = "fb_post_engagements"
    fb_post_reactions = "fb_post_reactions"
    fb_post_comments = "fb_post_comments"
    fb_post_shares = "fb_post_shares"
    fb_post_saves = "fb_post_saves"
    fb_page_engagements = "fb_page_engagements"
    fb_link_clicks = "fb_link_clicks"
    fb_landing_page_views = "fb_landing_page_views"
    fb_video_views = "fb_video_views"
    fb_video_views_25pct = "fb_video_views_25pct"
    fb_video_views_50pct = "fb_video_views_50pct"
    fb_video_views_75pct = "fb_video_views_75pct"
    fb_video_views_100pct = "fb_video_views_100pct"
    fb_video_avg_watch_time = "fb_video_avg_watch_time"
    fb_video_play_actions = "fb_video_play_actions"
    fb_video_thruplay_watched = "fb_video_thruplay_watched"
    fb_total_conversions = "fb_total_conversions"
    fb_conversion_value = "fb_conversion_value"
    fb_total_leads = "fb_total_leads"

    # Platform ratios recomputed from totals
    fb_frequency = "fb_frequency"
    fb_ctr = "fb_ctr"
    fb_unique_ctr = "fb_unique_ctr"
    fb_cpc = "fb_cpc"
    fb_cpm = "fb_cpm"
    fb_cpr = "fb_cpr"
    fb_cost_per_conversion = "fb_cost_per_conversion"
    fb_cost_per_lead = "fb_cost_per_lead"

    # Mean of the weekly platform ratios
    fb_avg_frequency = "fb_avg_frequency"
    fb_avg_ctr = "fb_avg_ctr"
    fb_avg_unique_ctr = "fb_avg_unique_ctr"
    fb_avg_cpc = "fb_avg_cpc"
    fb_avg_cpm = "fb_avg_cpm"
    fb_avg_cpr = "fb_avg_cpr"

    # CRM funnel
    numberOfLeads = "numberOfLeads"
    numberOfNewLeads = "numberOfNewLeads"
    numberOfInProgress = "numberOfInProgress"
    numberOfEstimateSets = "numberOfEstimateSets"
    numberOfVirtualQuotes = "numberOfVirtualQuotes"
    numberOfProposalPresented = "numberOfProposalPresented"
    numberOfJobsBooked = "numberOfJobsBooked"
    numberOfUnqualifiedLeads = "numberOfUnqualifiedLeads"
    numberOfEstimateCanceled = "numberOfEstimateCanceled"
    numberOfJobLost = "numberOfJobLost"

    # Funnel costs
    costPerLead = "costPerLead"
    costPerEstimateSet = "costPerEstimateSet"
    costPerJobBooked = "costPerJobBooked"
    costOfMarketingPercent = "costOfMarketingPercent"
    estimateSetRate = "estimateSetRate"
    revenue = "revenue"


# Summed snapshot metrics: column -> key in WeeklyAdSnapshot.metrics
ADDITIVE_METRICS: Dict[ReportColumn, str] = {
    ReportColumn.fb_spend: "spend",
    ReportColumn.fb_impressions: "impressions",
    ReportColumn.fb_clicks: "clicks",
    ReportColumn.fb_unique_clicks: "unique_clicks",
    ReportColumn.fb_reach: "reach",
    ReportColumn.fb_post_engagements: "post_engagements",
    ReportColumn.fb_post_reactions: "post_reactions",
    ReportColumn.fb_post_comments: "post_comments",
    ReportColumn.fb_post_shares: "post_shares",
    ReportColumn.fb_post_saves: "post_saves",
    ReportColumn.fb_page_engagements: "page_engagements",
    ReportColumn.fb_link_clicks: "link_clicks",
    ReportColumn.fb_landing_page_views: "landing_page_views",
    ReportColumn.fb_video_views: "video_views",
    ReportColumn.fb_video_views_25pct: "video_views_25pct",
    ReportColumn.fb_video_views_50pct: "video_views_50pct",
    ReportColumn.fb_video_views_75pct: "video_views_75pct",
    ReportColumn.fb_video_views_100pct: "video_views_100pct",
    ReportColumn.fb_video_avg_watch_time: "video_avg_watch_time",
    ReportColumn.fb_video_play_actions: "video_play_actions",
    ReportColumn.fb_video_thruplay_watched: "video_thruplay_watched",
    ReportColumn.fb_total_conversions: "total_conversions",
    ReportColumn.fb_conversion_value: "conversion_value",
    ReportColumn.fb_total_leads: "total_leads",
}

# Platform-computed weekly ratios averaged per record: column -> metrics key
AVERAGED_RATIO_METRICS: Dict[ReportColumn, str] = {
    ReportColumn.fb_avg_frequency: "frequency",
    ReportColumn.fb_avg_ctr: "ctr",
    ReportColumn.fb_avg_unique_ctr: "unique_ctr",
    ReportColumn.fb_avg_cpc: "cpc",
    ReportColumn.fb_avg_cpm: "cpm",
    ReportColumn.fb_avg_cpr: "cpr",
}

DIMENSION_COLUMNS = (
    ReportColumn.campaignName,
    ReportColumn.adSetName,
    ReportColumn.adName,
    ReportColumn.service,
    ReportColumn.zipCode,
)

# Columns reported in the averages block, computed over all groups' totals
AVERAGE_COLUMNS = (
    ReportColumn.fb_frequency,
    ReportColumn.fb_ctr,
    ReportColumn.fb_unique_ctr,
    ReportColumn.fb_cpc,
    ReportColumn.fb_cpm,
    ReportColumn.fb_cpr,
    ReportColumn.fb_cost_per_conversion,
    ReportColumn.fb_cost_per_lead,
    ReportColumn.costPerLead,
    ReportColumn.costPerEstimateSet,
    ReportColumn.costPerJobBooked,
    ReportColumn.costOfMarketingPercent,
    ReportColumn.estimateSetRate,
)


def safe_div(numerator: float, denominator: float, scale: float = 1.0) -> Optional[float]:
    """numerator / denominator * scale rounded to 2 decimals; None on a zero denominator."""
    if not denominator:
        return None
    return round(numerator / denominator * scale, 2)


def _count(value: float) -> Any:
    return int(value) if float(value).is_integer() else round(value, 2)


def _joined(values) -> Optional[str]:
    return ", ".join(sorted(values)) if values else None


def _total(acc: "GroupAccumulator", column: ReportColumn) -> float:
    return acc.totals.get(ADDITIVE_METRICS[column], 0.0)


def _spend(acc: "GroupAccumulator") -> float:
    return _total(acc, ReportColumn.fb_spend)


def _estimate_set_rate(acc: "GroupAccumulator") -> Optional[float]:
    net_estimates = (
        acc.estimate_sets + acc.virtual_quotes + acc.proposals_presented + acc.jobs_booked
    )
    net_unqualified = acc.unqualified + acc.estimates_canceled + acc.jobs_lost
    return safe_div(net_estimates, net_estimates + net_unqualified, 100)


Accessor = Callable[["GroupAccumulator"], Any]

ACCESSORS: Dict[ReportColumn, Accessor] = {
    ReportColumn.campaignName: lambda acc: acc.campaign_name,
    ReportColumn.adSetName: lambda acc: acc.ad_set_name,
    ReportColumn.adName: lambda acc: acc.ad_name,
    ReportColumn.service: lambda acc: _joined(acc.services),
    ReportColumn.zipCode: lambda acc: _joined(acc.zip_codes),

    ReportColumn.fb_frequency: lambda acc: safe_div(
        _total(acc, ReportColumn.fb_impressions), _total(acc, ReportColumn.fb_reach)
    ),
    ReportColumn.fb_ctr: lambda acc: safe_div(
        _total(acc, ReportColumn.fb_clicks), _total(acc, ReportColumn.fb_impressions), 100
    ),
    ReportColumn.fb_unique_ctr: lambda acc: safe_div(
        _total(acc, ReportColumn.fb_unique_clicks), _total(acc, ReportColumn.fb_impressions), 100
    ),
    ReportColumn.fb_cpc: lambda acc: safe_div(_spend(acc), _total(acc, ReportColumn.fb_clicks)),
    ReportColumn.fb_cpm: lambda acc: safe_div(_spend(acc), _total(acc, ReportColumn.fb_impressions), 1000),
    ReportColumn.fb_cpr: lambda acc: safe_div(_spend(acc), _total(acc, ReportColumn.fb_reach), 1000),
    ReportColumn.fb_cost_per_conversion: lambda acc: safe_div(
        _spend(acc), _total(acc, ReportColumn.fb_total_conversions)
    ),
    ReportColumn.fb_cost_per_lead: lambda acc: safe_div(_spend(acc), _total(acc, ReportColumn.fb_total_leads)),

    ReportColumn.numberOfLeads: lambda acc: acc.leads,
    ReportColumn.numberOfNewLeads: lambda acc: acc.new_leads,
    ReportColumn.numberOfInProgress: lambda acc: acc.in_progress,
    ReportColumn.numberOfEstimateSets: lambda acc: acc.estimate_sets,
    ReportColumn.numberOfVirtualQuotes: lambda acc: acc.virtual_quotes,
    ReportColumn.numberOfProposalPresented: lambda acc: acc.proposals_presented,
    ReportColumn.numberOfJobsBooked: lambda acc: acc.jobs_booked,
    ReportColumn.numberOfUnqualifiedLeads: lambda acc: acc.unqualified,
    ReportColumn.numberOfEstimateCanceled: lambda acc: acc.estimates_canceled,
    ReportColumn.numberOfJobLost: lambda acc: acc.jobs_lost,

    ReportColumn.costPerLead: lambda acc: safe_div(_spend(acc), acc.leads),
    ReportColumn.costPerEstimateSet: lambda acc: safe_div(_spend(acc), acc.estimate_sets),
    ReportColumn.costPerJobBooked: lambda acc: safe_div(_spend(acc), acc.jobs_booked),
    ReportColumn.costOfMarketingPercent: lambda acc: safe_div(_spend(acc), acc.revenue, 100),
    ReportColumn.estimateSetRate: _estimate_set_rate,
    ReportColumn.revenue: lambda acc: round(acc.revenue, 2),
}

for _column, _key in ADDITIVE_METRICS.items():
    if _column == ReportColumn.fb_spend:
        ACCESSORS[_column] = lambda acc: round(_spend(acc), 2)
    else:
        ACCESSORS[_column] = lambda acc, _key=_key: _count(acc.totals.get(_key, 0.0))

for _column, _key in AVERAGED_RATIO_METRICS.items():
    ACCESSORS[_column] = lambda acc, _key=_key: safe_div(acc.ratio_sums.get(_key, 0.0), acc.record_count)

del _column, _key


def parse_columns(columns: Optional[Dict[str, bool]]) -> List[ReportColumn]:
    """Requested column names -> ReportColumn list, in registry order.

    No selection means every column.

    Raises:
        ValidationError: For names outside the registry
    """
    if not columns:
        return list(ReportColumn)

    unknown = sorted(name for name in columns if name not in ReportColumn.__members__)
    if unknown:
        raise ValidationError(f"Unknown columns: {', '.join(unknown)}")

    return [column for column in ReportColumn if columns.get(column.value)]


def project(acc: "GroupAccumulator", columns: List[ReportColumn]) -> Dict[str, Any]:
    return {column.value: ACCESSORS[column](acc) for column in columns}


def averages(acc: "GroupAccumulator") -> Dict[str, Optional[float]]:
    return {column.value: ACCESSORS[column](acc) for column in AVERAGE_COLUMNS}


def empty_averages() -> Dict[str, None]:
    return {column.value: None for column in AVERAGE_COLUMNS}

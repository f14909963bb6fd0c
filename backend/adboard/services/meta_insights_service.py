"""Meta ad-level insights, enriched with ad creatives and lead forms.

WHAT:
    For one ad account and one date window:
      1. GET /{act_id}/insights (level=ad) -> per-ad metric rows
      2. GET /?ids=... (50 per call)       -> ad -> creative text + lead form id
      3. GET /?ids=... (50 per call)       -> lead form names
    and joins them into "enriched ad" dicts, then maps those to the
    weekly snapshot shape persisted by snapshot_store.

WHY:
    Insights rows only carry ids/names and raw `actions` arrays. The board
    needs flat numeric metrics (leads, video quartiles, engagement) and the
    creative copy next to them, so normalization happens once at sync time
    instead of on every report.

REFERENCES:
    - https://developers.facebook.com/docs/marketing-api/insights
    - adboard/services/weekly_sync_service.py (calls get_enriched_ads per week)
    - adboard/models.py::WeeklyAdSnapshot.metrics
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from adboard.services.meta_graph_client import MetaGraphClient
from adboard.utils.dates import WeekPeriod, format_date

logger = logging.getLogger(__name__)


IDS_PER_REQUEST = 50
INSIGHTS_PAGE_LIMIT = 500

INSIGHT_FIELDS = [
    "ad_id",
    "ad_name",
    "adset_id",
    "adset_name",
    "campaign_id",
    "campaign_name",
    "objective",
    "impressions",
    "reach",
    "frequency",
    "clicks",
    "unique_clicks",
    "ctr",
    "unique_ctr",
    "cpc",
    "cpm",
    "cpp",
    "spend",
    "inline_link_clicks",
    "actions",
    "action_values",
    "cost_per_action_type",
    "video_p25_watched_actions",
    "video_p50_watched_actions",
    "video_p75_watched_actions",
    "video_p100_watched_actions",
    "video_avg_time_watched_actions",
    "video_play_actions",
    "video_thruplay_watched_actions",
    "quality_ranking",
    "date_start",
    "date_stop",
]

AD_CREATIVE_FIELDS = ",".join([
    "id",
    "name",
    "campaign_id",
    "adset_id",
    "creative{id,name,body,title,object_story_spec{link_data{message,name,description,caption,call_to_action{type,value}}}}",
])

LEAD_ACTION_TYPES = ("lead", "leadgen.other", "onsite_conversion.lead_grouped")
CONVERSION_ACTION_TYPES = ("offsite_conversion", "omni_purchase")


def _chunks(items: List[str], size: int) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


def _number(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _action_value(actions: Optional[List[Dict[str, Any]]], *action_types: str) -> float:
    """First non-zero value among `action_types`, in the given order."""
    if not actions:
        return 0.0
    by_type = {a.get("action_type"): a.get("value") for a in actions}
    for action_type in action_types:
        value = _number(by_type.get(action_type))
        if value:
            return value
    return 0.0


def _first_value(metric: Optional[List[Dict[str, Any]]]) -> float:
    if not metric:
        return 0.0
    return _number(metric[0].get("value"))


def normalize_insight_row(row: Dict[str, Any]) -> Dict[str, float]:
    """Flatten one insights row into the snapshot `metrics` bag.

    WHAT:
        Numeric coercion of the scalar fields plus extraction of counts that
        Meta only reports inside `actions` / `*_watched_actions` arrays.
    WHY:
        Action types differ by objective (e.g. `lead` vs
        `onsite_conversion.lead_grouped`), so each metric checks its
        aliases in priority order.
    """
    actions = row.get("actions")
    spend = _number(row.get("spend"))

    leads = _action_value(actions, *LEAD_ACTION_TYPES)
    conversions = _action_value(actions, *CONVERSION_ACTION_TYPES)
    conversion_value = _action_value(row.get("action_values"), *CONVERSION_ACTION_TYPES)

    if conversions > 0:
        cost_per_conversion = spend / conversions
    else:
        cost_per_conversion = _action_value(row.get("cost_per_action_type"), "offsite_conversion")

    return {
        "impressions": _number(row.get("impressions")),
        "reach": _number(row.get("reach")),
        "frequency": _number(row.get("frequency")),
        "clicks": _number(row.get("clicks")),
        "unique_clicks": _number(row.get("unique_clicks")),
        "ctr": _number(row.get("ctr")),
        "unique_ctr": _number(row.get("unique_ctr")),
        "spend": spend,
        "cpc": _number(row.get("cpc")),
        "cpm": _number(row.get("cpm")),
        "cpr": _number(row.get("cpp")),
        "inline_link_clicks": _number(row.get("inline_link_clicks")),
        "post_engagements": _action_value(actions, "post_engagement", "post"),
        "post_reactions": _action_value(actions, "post_reaction", "like"),
        "post_comments": _action_value(actions, "comment"),
        "post_saves": _action_value(actions, "post_save", "onsite_conversion.post_save"),
        "post_shares": _action_value(actions, "post_share", "share"),
        "page_engagements": _action_value(actions, "page_engagement"),
        "link_clicks": _number(row.get("inline_link_clicks")) or _action_value(actions, "link_click"),
        "landing_page_views": _action_value(actions, "landing_page_view"),
        "video_views": _action_value(actions, "video_view"),
        "video_views_25pct": _first_value(row.get("video_p25_watched_actions")),
        "video_views_50pct": _first_value(row.get("video_p50_watched_actions")),
        "video_views_75pct": _first_value(row.get("video_p75_watched_actions")),
        "video_views_100pct": _first_value(row.get("video_p100_watched_actions")),
        "video_avg_watch_time": _first_value(row.get("video_avg_time_watched_actions")),
        "video_play_actions": _first_value(row.get("video_play_actions")),
        "video_thruplay_watched": _first_value(row.get("video_thruplay_watched_actions")),
        "total_conversions": conversions,
        "conversion_value": conversion_value,
        "cost_per_conversion": cost_per_conversion,
        "purchases": _action_value(actions, "purchase", "omni_purchase"),
        "total_leads": leads,
        "cost_per_lead": spend / leads if leads > 0 else 0.0,
    }


def map_ad_with_creative(ad: Dict[str, Any]) -> Dict[str, Any]:
    """Pull copy and lead form id out of the ad's nested creative."""
    creative = ad.get("creative") or {}
    link_data = (creative.get("object_story_spec") or {}).get("link_data") or {}
    cta_value = (link_data.get("call_to_action") or {}).get("value") or {}

    return {
        "ad_id": ad.get("id"),
        "ad_name": ad.get("name"),
        "adset_id": ad.get("adset_id"),
        "campaign_id": ad.get("campaign_id"),
        "creative": {
            "id": creative.get("id"),
            "name": creative.get("name"),
            "primary_text": creative.get("body") or link_data.get("message"),
            "headline": creative.get("title") or link_data.get("name"),
            "raw": creative,
        } if creative else None,
        "lead_gen_form_id": cta_value.get("lead_gen_form_id"),
    }


class MetaInsightsService:
    """Fetches and enriches ad-level insights for one ad account."""

    def __init__(self, graph: MetaGraphClient):
        self.graph = graph

    async def get_ad_insights(
        self,
        ad_account_id: str,
        since: date,
        until: date,
        access_token: str,
    ) -> List[Dict[str, Any]]:
        logger.info("[INSIGHTS] Fetching ad insights for %s from %s to %s", ad_account_id, since, until)
        params = {
            "level": "ad",
            "fields": ",".join(INSIGHT_FIELDS),
            "time_range": {"since": format_date(since), "until": format_date(until)},
            "limit": INSIGHTS_PAGE_LIMIT,
        }
        rows = await self.graph.fetch_all(f"/{ad_account_id}/insights", params, access_token)
        logger.info("[INSIGHTS] Retrieved %d insight rows", len(rows))
        return rows

    async def _fetch_by_ids(self, ids: List[str], fields: str, access_token: str) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for chunk in _chunks(ids, IDS_PER_REQUEST):
            page = await self.graph.fetch_page("/", {"ids": ",".join(chunk), "fields": fields}, access_token)
            result.update(page)
        return result

    async def get_ads_with_creatives(self, ad_ids: List[str], access_token: str) -> Dict[str, Dict[str, Any]]:
        """Return {ad_id: raw ad with nested creative}."""
        if not ad_ids:
            return {}
        logger.info("[INSIGHTS] Fetching %d ads with creatives", len(ad_ids))
        return await self._fetch_by_ids(ad_ids, AD_CREATIVE_FIELDS, access_token)

    async def get_lead_forms(self, form_ids: List[str], access_token: str) -> Dict[str, Dict[str, Any]]:
        """Return {form_id: {"id", "name"}}."""
        if not form_ids:
            return {}
        logger.info("[INSIGHTS] Fetching %d lead forms", len(form_ids))
        raw = await self._fetch_by_ids(form_ids, "id,name", access_token)
        return {form_id: {"id": value.get("id"), "name": value.get("name")} for form_id, value in raw.items()}

    async def get_enriched_ads(
        self,
        ad_account_id: str,
        since: date,
        until: date,
        access_token: str,
    ) -> List[Dict[str, Any]]:
        """Insights rows joined with creative copy, lead form and normalized metrics."""
        rows = await self.get_ad_insights(ad_account_id, since, until, access_token)
        if not rows:
            return []

        ad_ids = list(dict.fromkeys(row["ad_id"] for row in rows if row.get("ad_id")))
        raw_ads = await self.get_ads_with_creatives(ad_ids, access_token)

        enriched_by_ad: Dict[str, Dict[str, Any]] = {}
        form_ids: List[str] = []
        for ad_id in ad_ids:
            ad = raw_ads.get(ad_id)
            if not ad:
                continue
            mapped = map_ad_with_creative(ad)
            enriched_by_ad[ad_id] = mapped
            form_id = mapped["lead_gen_form_id"]
            if form_id and form_id not in form_ids:
                form_ids.append(form_id)

        forms = await self.get_lead_forms(form_ids, access_token)

        enriched = []
        for row in rows:
            ad_meta = enriched_by_ad.get(row.get("ad_id"), {})
            form_id = ad_meta.get("lead_gen_form_id")
            enriched.append({
                "campaign_id": row.get("campaign_id"),
                "campaign_name": row.get("campaign_name"),
                "adset_id": row.get("adset_id"),
                "adset_name": row.get("adset_name"),
                "ad_id": row.get("ad_id"),
                "ad_name": row.get("ad_name"),
                "objective": row.get("objective"),
                "creative": ad_meta.get("creative"),
                "lead_form": forms.get(form_id) if form_id else None,
                "metrics": normalize_insight_row(row),
            })
        return enriched


def to_snapshot(client_id: str, ad_account_id: str, week: WeekPeriod, ad: Dict[str, Any]) -> Dict[str, Any]:
    """Map one enriched ad to the column dict snapshot_store.upsert_many expects."""
    creative = ad.get("creative") or {}
    lead_form = ad.get("lead_form") or {}
    return {
        "client_id": client_id,
        "ad_account_id": ad_account_id,
        "campaign_id": ad.get("campaign_id"),
        "campaign_name": ad.get("campaign_name"),
        "ad_set_id": ad.get("adset_id"),
        "ad_set_name": ad.get("adset_name"),
        "ad_id": ad["ad_id"],
        "ad_name": ad.get("ad_name"),
        "objective": ad.get("objective"),
        "creative_id": creative.get("id"),
        "creative_name": creative.get("name"),
        "primary_text": creative.get("primary_text"),
        "headline": creative.get("headline"),
        "creative_raw": creative.get("raw"),
        "lead_form_id": lead_form.get("id"),
        "lead_form_name": lead_form.get("name"),
        "metrics": ad.get("metrics") or {},
        "year": week.year,
        "week_number": week.week_number,
        "week_start": week.week_start,
        "week_end": week.week_end,
    }

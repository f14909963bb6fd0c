"""Weekly Sync Service - freshness-aware Meta snapshot syncing.

WHAT:
    Decides whether a (client, date range) request needs data from Meta, and
    if so fetches every week of the range and upserts it into
    `weekly_ad_snapshots`.

WHY:
    - The Graph API is rate limited; reports must not trigger a fetch when
      every week is already stored and the current week is recent
    - Past weeks never change once stored, but the current week keeps moving,
      so it is refreshed when its newest row is older than 24 hours
    - Report requests should not wait on Meta unless asked to
      (`wait_for_sync`), so the sync can run as a background task

SYNC DECISION:
    fresh                 nothing missing, current week recent
    skipped_unconfigured  client has no ad account or no Meta token
    already_running       a sync for this client is in flight in this process
    synced / failed       blocking sync finished
    scheduled             background sync started

REFERENCES:
    - adboard/services/meta_insights_service.py (per-week fetch)
    - adboard/services/snapshot_store.py (upsert)
    - adboard/utils/dates.py::get_month_weeks (week split)
    - adboard/workers/arq_worker.py::process_weekly_sync_job
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set

from sqlalchemy.orm import Session

from adboard.services.creative_cache import CreativeCache
from adboard.services.meta_graph_client import MetaGraphClient
from adboard.services.meta_insights_service import MetaInsightsService, to_snapshot
from adboard.services.snapshot_store import SnapshotStore
from adboard.services.tenant_directory import TenantDirectory
from adboard.telemetry import capture_exception
from adboard.utils.dates import WeekPeriod, current_week_start, format_date, get_month_weeks, parse_date, utcnow

logger = logging.getLogger(__name__)


DEFAULT_BATCH_SIZE = 10
DEFAULT_STALE_AFTER_HOURS = 24


class SyncDecision(str, enum.Enum):
    fresh = "fresh"
    skipped_unconfigured = "skipped_unconfigured"
    already_running = "already_running"
    synced = "synced"
    failed = "failed"
    scheduled = "scheduled"


@dataclass
class WeeklySaveResult:
    """Outcome of one save_weekly_analytics run."""
    saved_count: int = 0
    weeks_processed: int = 0
    date_range: Dict[str, str] = field(default_factory=dict)
    errors: List[Dict[str, str]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "savedCount": self.saved_count,
            "weeksProcessed": self.weeks_processed,
            "dateRange": self.date_range,
            "errors": self.errors,
        }


# =============================================================================
# FETCH AND SAVE
# =============================================================================

async def save_weekly_analytics(
    db: Session,
    insights: MetaInsightsService,
    client_id: str,
    ad_account_id: str,
    start: date,
    end: date,
    access_token: str,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> WeeklySaveResult:
    """Fetch enriched ads for every week of [start, end] and upsert them.

    WHAT:
        Splits the range into calendar weeks and processes them in batches:
        batches run one after another, weeks inside a batch concurrently.
    WHY:
        Meta aggregates insights over the requested window, so each week is
        requested separately to get true per-week values. A week that fails
        is recorded in `errors` and does not abort the others.
    """
    weeks = get_month_weeks(start, end)
    store = SnapshotStore(db)
    result = WeeklySaveResult(date_range={"startDate": format_date(start), "endDate": format_date(end)})

    logger.info(
        "[WEEKLY_SYNC] Saving %d weeks for client %s (%s) from %s to %s",
        len(weeks), client_id, ad_account_id, start, end,
    )

    # One session for the whole run; writes go to a worker thread one at a time
    write_lock = asyncio.Lock()

    async def process_week(week: WeekPeriod) -> int:
        ads = await insights.get_enriched_ads(ad_account_id, week.week_start, week.week_end, access_token)
        if not ads:
            logger.info("[WEEKLY_SYNC] No ads for week %s", week.week_start)
            return 0
        snapshots = [to_snapshot(client_id, ad_account_id, week, ad) for ad in ads if ad.get("ad_id")]
        async with write_lock:
            return await asyncio.to_thread(store.upsert_many, snapshots)

    for i in range(0, len(weeks), batch_size):
        batch = weeks[i:i + batch_size]
        outcomes = await asyncio.gather(*(process_week(week) for week in batch), return_exceptions=True)

        for week, outcome in zip(batch, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error("[WEEKLY_SYNC] Week %s failed: %s", week.week_start, outcome)
                result.errors.append({"weekStart": format_date(week.week_start), "error": str(outcome)})
                continue
            result.saved_count += outcome
            result.weeks_processed += 1

    logger.info(
        "[WEEKLY_SYNC] Client %s: %d snapshots saved over %d weeks, %d errors",
        client_id, result.saved_count, result.weeks_processed, len(result.errors),
    )
    return result


# =============================================================================
# SCHEDULER
# =============================================================================

class WeeklySyncScheduler:
    """Per-process sync coordinator.

    One instance is shared by the API process (see deps.get_weekly_sync_scheduler)
    so the in-flight guard covers every request handled by that process.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        graph: MetaGraphClient,
        tenants: TenantDirectory,
        batch_size: int = DEFAULT_BATCH_SIZE,
        stale_after_hours: int = DEFAULT_STALE_AFTER_HOURS,
        auto_fetch_creatives: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.graph = graph
        self.tenants = tenants
        self.batch_size = batch_size
        self.stale_after = timedelta(hours=stale_after_hours)
        self.auto_fetch_creatives = auto_fetch_creatives
        self._clock = clock

        self._lock = asyncio.Lock()
        self._running: Set[str] = set()
        # Background tasks stay referenced until done
        self._tasks: Set[asyncio.Task] = set()

    def is_running(self, client_id: str) -> bool:
        return client_id in self._running

    # --- freshness ---------------------------------------------------------

    def _find_missing_weeks(self, client_id: str, start: date, end: date) -> List[WeekPeriod]:
        expected = get_month_weeks(start, end)
        db = self.session_factory()
        try:
            existing = SnapshotStore(db).get_existing_week_starts(client_id, start, end)
        finally:
            db.close()
        return [week for week in expected if week.week_start not in existing]

    def _current_week_is_stale(self, client_id: str) -> bool:
        now = self._clock()
        today = now.date()
        db = self.session_factory()
        try:
            rows = SnapshotStore(db).get_by_date_range(client_id, current_week_start(today), today)
        finally:
            db.close()

        if not rows:
            return True
        latest = max(row.saved_at for row in rows if row.saved_at is not None)
        return now - latest > self.stale_after

    async def _is_current_week_stale(self, client_id: str) -> bool:
        try:
            return await asyncio.to_thread(self._current_week_is_stale, client_id)
        except Exception as e:
            logger.warning("[WEEKLY_SYNC] Staleness check failed for client %s, assuming stale: %s", client_id, e)
            return True

    # --- entrypoint --------------------------------------------------------

    async def ensure_weekly_data_exists(
        self,
        client_id: str,
        start,
        end,
        wait_for_sync: bool = False,
    ) -> SyncDecision:
        """Sync the range from Meta when weeks are missing or the current week is stale.

        Args:
            client_id: Tenant id
            start: Range start (date or YYYY-MM-DD)
            end: Range end (date or YYYY-MM-DD)
            wait_for_sync: Await the sync instead of running it in the background

        Returns:
            SyncDecision describing what happened
        """
        start, end = parse_date(start), parse_date(end)

        missing_weeks, current_week_stale = await asyncio.gather(
            asyncio.to_thread(self._find_missing_weeks, client_id, start, end),
            self._is_current_week_stale(client_id),
        )

        if not missing_weeks and not current_week_stale:
            logger.debug("[WEEKLY_SYNC] Client %s is fresh for %s..%s", client_id, start, end)
            return SyncDecision.fresh

        ad_account_id, access_token = await asyncio.gather(
            self.tenants.get_ad_account_id(client_id),
            self.tenants.get_access_token(client_id),
        )
        if not ad_account_id or not access_token:
            logger.info(
                "[WEEKLY_SYNC] Skipping client %s: ad account %s, token %s",
                client_id, "set" if ad_account_id else "missing", "set" if access_token else "missing",
            )
            return SyncDecision.skipped_unconfigured

        async with self._lock:
            if client_id in self._running:
                logger.info("[WEEKLY_SYNC] Sync already running for client %s", client_id)
                return SyncDecision.already_running
            self._running.add(client_id)

        logger.info(
            "[WEEKLY_SYNC] Syncing client %s: %d missing weeks, current week stale=%s, wait=%s",
            client_id, len(missing_weeks), current_week_stale, wait_for_sync,
        )

        sync = self._run_sync(client_id, ad_account_id, start, end, access_token)
        if wait_for_sync:
            ok = await sync
            return SyncDecision.synced if ok else SyncDecision.failed

        task = asyncio.create_task(sync)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return SyncDecision.scheduled

    async def _run_sync(
        self,
        client_id: str,
        ad_account_id: str,
        start: date,
        end: date,
        access_token: str,
    ) -> bool:
        """Fetch-and-save the full range. Never raises; failures are logged and captured."""
        try:
            db = self.session_factory()
            try:
                result = await save_weekly_analytics(
                    db,
                    MetaInsightsService(self.graph),
                    client_id,
                    ad_account_id,
                    start,
                    end,
                    access_token,
                    batch_size=self.batch_size,
                )
                if self.auto_fetch_creatives:
                    summary = await CreativeCache(db, self.graph).fetch_and_save_for_client(
                        client_id, start, end, access_token
                    )
                    logger.info(
                        "[WEEKLY_SYNC] Creatives refreshed for client %s: %d saved, %d failed",
                        client_id, summary["saved"], summary["failed"],
                    )
            finally:
                db.close()
            return result.success

        except Exception as e:
            logger.exception("[WEEKLY_SYNC] Sync failed for client %s", client_id)
            capture_exception(e, extra={
                "client_id": client_id,
                "ad_account_id": ad_account_id,
                "start_date": format_date(start),
                "end_date": format_date(end),
            })
            return False

        finally:
            self._running.discard(client_id)

    async def wait_for_background_syncs(self) -> None:
        """Await every in-flight background sync (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks))

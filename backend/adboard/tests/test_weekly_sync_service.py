"""Tests for the weekly sync (fetch-and-save + freshness scheduler).

WHAT:
    - save_weekly_analytics: per-week fetch, upsert, per-week error capture
    - WeeklySyncScheduler: fresh / unconfigured / running / synced / failed /
      background decisions

WHY:
    Reports call ensure_weekly_data_exists on every request. It must not hit
    Meta when data is complete and recent, must never run two syncs for the
    same client at once, and must never let a background failure escape.

REFERENCES:
    - adboard/services/weekly_sync_service.py (module under test)
"""

import asyncio
from datetime import date, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest

from adboard.models import Client, WeeklyAdSnapshot
from adboard.security import encrypt_secret
from adboard.services.weekly_sync_service import (
    SyncDecision,
    WeeklySyncScheduler,
    save_weekly_analytics,
)
from adboard.services.snapshot_store import SnapshotStore
from adboard.services.tenant_directory import TenantDirectory


NOW = datetime(2025, 1, 20, 10, 0)  # Monday
RANGE_START = date(2025, 1, 6)
RANGE_END = date(2025, 1, 19)


def _enriched_ad(ad_id="ad-1", spend=50.0):
    return {
        "campaign_id": "c-1",
        "campaign_name": "Campaign A",
        "adset_id": "as-1",
        "adset_name": "Ad Set A",
        "ad_id": ad_id,
        "ad_name": f"Ad {ad_id}",
        "objective": "OUTCOME_LEADS",
        "creative": {"id": "cr-1", "name": "Creative", "primary_text": "Hi", "headline": "Head", "raw": {}},
        "lead_form": {"id": "form-1", "name": "Form"},
        "metrics": {"spend": spend, "impressions": 1000},
    }


@pytest.fixture
def configured_client(test_db_session):
    client = Client(
        id="client-1",
        name="Acme Roofing",
        fb_ad_account_id="123",
        meta_access_token_enc=encrypt_secret("meta-token", context="test"),
    )
    test_db_session.add(client)
    test_db_session.commit()
    return client


@pytest.fixture
def scheduler(session_factory):
    return WeeklySyncScheduler(
        session_factory=session_factory,
        graph=Mock(),
        tenants=TenantDirectory(session_factory),
        clock=lambda: NOW,
    )


@pytest.fixture
def mock_insights():
    insights = MagicMock()
    insights.get_enriched_ads = AsyncMock(return_value=[_enriched_ad()])
    with patch("adboard.services.weekly_sync_service.MetaInsightsService", return_value=insights):
        yield insights


class TestSaveWeeklyAnalytics:
    def test_each_week_fetched_separately_and_saved(self, test_db_session):
        """WHAT: Two weeks in range -> two Meta calls with week bounds, two snapshots.
        WHY: Meta aggregates over the requested window; one call per week keeps values weekly.
        """
        insights = MagicMock()
        insights.get_enriched_ads = AsyncMock(return_value=[_enriched_ad()])

        result = asyncio.run(save_weekly_analytics(
            test_db_session, insights, "client-1", "act_123", RANGE_START, RANGE_END, "tok",
        ))

        assert result.success
        assert result.weeks_processed == 2
        assert result.saved_count == 2
        windows = sorted((c.args[1], c.args[2]) for c in insights.get_enriched_ads.await_args_list)
        assert windows == [(date(2025, 1, 6), date(2025, 1, 12)), (date(2025, 1, 13), date(2025, 1, 19))]

        rows = test_db_session.query(WeeklyAdSnapshot).order_by(WeeklyAdSnapshot.week_start).all()
        assert [r.week_number for r in rows] == [2, 3]
        assert rows[0].ad_account_id == "act_123"
        assert rows[0].lead_form_name == "Form"

    def test_failed_week_is_recorded_and_others_still_saved(self, test_db_session):
        insights = MagicMock()

        async def enriched(ad_account_id, since, until, token):
            if since == date(2025, 1, 13):
                raise RuntimeError("graph down")
            return [_enriched_ad()]

        insights.get_enriched_ads = AsyncMock(side_effect=enriched)

        result = asyncio.run(save_weekly_analytics(
            test_db_session, insights, "client-1", "act_123", RANGE_START, RANGE_END, "tok",
        ))

        assert not result.success
        assert result.errors == [{"weekStart": "2025-01-13", "error": "graph down"}]
        assert result.saved_count == 1
        assert result.as_dict()["weeksProcessed"] == 1

    def test_database_failure_in_one_week_does_not_block_the_next(self, test_db_session):
        """WHAT: Week 1's write violates a constraint; week 2 is still saved.
        WHY: All weeks share one session, so a failed write must leave it usable.
        """
        insights = MagicMock()
        insights.get_enriched_ads = AsyncMock(return_value=[_enriched_ad()])
        real_apply = SnapshotStore._apply

        def apply_breaking_first_week(store, snapshots):
            if snapshots[0]["week_start"] == RANGE_START:
                store.db.add(WeeklyAdSnapshot(
                    client_id="client-1", ad_id=None, week_start=RANGE_START, week_end=date(2025, 1, 12),
                ))
                return 1
            return real_apply(store, snapshots)

        with patch.object(SnapshotStore, "_apply", apply_breaking_first_week):
            result = asyncio.run(save_weekly_analytics(
                test_db_session, insights, "client-1", "act_123", RANGE_START, RANGE_END, "tok",
            ))

        assert [e["weekStart"] for e in result.errors] == ["2025-01-06"]
        assert result.saved_count == 1
        saved = test_db_session.query(WeeklyAdSnapshot).all()
        assert [row.week_start for row in saved] == [date(2025, 1, 13)]

    def test_resync_does_not_duplicate_snapshots(self, test_db_session):
        insights = MagicMock()
        insights.get_enriched_ads = AsyncMock(return_value=[_enriched_ad()])

        for _ in range(2):
            asyncio.run(save_weekly_analytics(
                test_db_session, insights, "client-1", "act_123", RANGE_START, RANGE_END, "tok",
            ))

        assert test_db_session.query(WeeklyAdSnapshot).count() == 2


class TestEnsureWeeklyDataExists:
    def test_fresh_when_all_weeks_stored_and_current_week_recent(self, scheduler, make_snapshot, mock_insights):
        for week_start in (date(2025, 1, 6), date(2025, 1, 13), date(2025, 1, 20)):
            make_snapshot(week_start=week_start, saved_at=NOW - timedelta(hours=1))

        decision = asyncio.run(scheduler.ensure_weekly_data_exists("client-1", RANGE_START, RANGE_END))

        assert decision == SyncDecision.fresh
        mock_insights.get_enriched_ads.assert_not_called()

    def test_stale_current_week_triggers_sync(self, scheduler, configured_client, make_snapshot, mock_insights):
        """WHAT: All weeks present but current week older than 24h -> sync."""
        for week_start in (date(2025, 1, 6), date(2025, 1, 13), date(2025, 1, 20)):
            make_snapshot(week_start=week_start, saved_at=NOW - timedelta(hours=30))

        decision = asyncio.run(
            scheduler.ensure_weekly_data_exists("client-1", RANGE_START, RANGE_END, wait_for_sync=True)
        )

        assert decision == SyncDecision.synced
        assert mock_insights.get_enriched_ads.await_count == 2

    def test_unconfigured_client_is_skipped(self, scheduler, mock_insights):
        decision = asyncio.run(scheduler.ensure_weekly_data_exists("client-1", RANGE_START, RANGE_END))

        assert decision == SyncDecision.skipped_unconfigured
        mock_insights.get_enriched_ads.assert_not_called()

    def test_blocking_sync_saves_missing_weeks(self, scheduler, configured_client, test_db_session, mock_insights):
        decision = asyncio.run(
            scheduler.ensure_weekly_data_exists("client-1", "2025-01-06", "2025-01-19", wait_for_sync=True)
        )

        assert decision == SyncDecision.synced
        ad_account_ids = {c.args[0] for c in mock_insights.get_enriched_ads.await_args_list}
        tokens = {c.args[3] for c in mock_insights.get_enriched_ads.await_args_list}
        assert ad_account_ids == {"act_123"}
        assert tokens == {"meta-token"}
        test_db_session.expire_all()
        assert test_db_session.query(WeeklyAdSnapshot).count() == 2
        assert not scheduler.is_running("client-1")

    def test_in_flight_sync_is_not_duplicated(self, scheduler, configured_client, mock_insights):
        """WHAT: A second request while a sync runs returns already_running."""
        scheduler._running.add("client-1")

        decision = asyncio.run(scheduler.ensure_weekly_data_exists("client-1", RANGE_START, RANGE_END))

        assert decision == SyncDecision.already_running
        mock_insights.get_enriched_ads.assert_not_called()

    def test_background_sync_is_scheduled_and_completes(self, scheduler, configured_client, test_db_session, mock_insights):
        async def run():
            decision = await scheduler.ensure_weekly_data_exists("client-1", RANGE_START, RANGE_END)
            assert scheduler.is_running("client-1")
            await scheduler.wait_for_background_syncs()
            return decision

        assert asyncio.run(run()) == SyncDecision.scheduled
        assert not scheduler.is_running("client-1")
        test_db_session.expire_all()
        assert test_db_session.query(WeeklyAdSnapshot).count() == 2

    @patch("adboard.services.weekly_sync_service.capture_exception")
    @patch("adboard.services.weekly_sync_service.save_weekly_analytics", new_callable=AsyncMock)
    def test_sync_failure_is_captured_and_swallowed(self, mock_save, mock_capture, scheduler, configured_client):
        """WHAT: An exception inside the sync becomes SyncDecision.failed and a Sentry capture.
        WHY: The report must still be served from stored data.
        """
        mock_save.side_effect = RuntimeError("db exploded")

        decision = asyncio.run(
            scheduler.ensure_weekly_data_exists("client-1", RANGE_START, RANGE_END, wait_for_sync=True)
        )

        assert decision == SyncDecision.failed
        mock_capture.assert_called_once()
        assert mock_capture.call_args.kwargs["extra"]["client_id"] == "client-1"
        assert not scheduler.is_running("client-1")

    def test_partial_week_failure_reports_failed(self, scheduler, configured_client, mock_insights):
        mock_insights.get_enriched_ads.side_effect = RuntimeError("throttled")

        decision = asyncio.run(
            scheduler.ensure_weekly_data_exists("client-1", RANGE_START, RANGE_END, wait_for_sync=True)
        )

        assert decision == SyncDecision.failed

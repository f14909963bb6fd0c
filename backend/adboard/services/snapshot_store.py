"""Weekly ad snapshot persistence.

WHAT:
    Range reads and idempotent bulk upsert for `weekly_ad_snapshots`.

WHY:
    The sync scheduler may re-fetch the same week many times (current week
    every 24h, overlapping user requests). Upserting on
    (client_id, ad_id, week_start) keeps exactly one row per ad-week and lets
    concurrent writers race safely: the last write wins.

REFERENCES:
    - adboard/models.py::WeeklyAdSnapshot (unique constraint)
    - adboard/services/weekly_sync_service.py (writer)
    - adboard/services/ad_performance_board.py (reader)
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, Iterable, List, Set

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from adboard.models import WeeklyAdSnapshot
from adboard.utils.dates import utcnow

logger = logging.getLogger(__name__)


# Columns an upsert may overwrite; identity columns stay untouched.
_UPDATABLE_FIELDS = (
    "ad_account_id",
    "campaign_id",
    "campaign_name",
    "ad_set_id",
    "ad_set_name",
    "ad_name",
    "objective",
    "creative_id",
    "creative_name",
    "primary_text",
    "headline",
    "creative_raw",
    "lead_form_id",
    "lead_form_name",
    "metrics",
    "year",
    "week_number",
    "week_end",
)


class SnapshotStore:
    """Persistence boundary for weekly snapshots. No business logic."""

    def __init__(self, db: Session):
        self.db = db

    def _range_query(self, client_id: str, start: date, end: date):
        return self.db.query(WeeklyAdSnapshot).filter(
            WeeklyAdSnapshot.client_id == client_id,
            WeeklyAdSnapshot.week_start <= end,
            WeeklyAdSnapshot.week_end >= start,
            WeeklyAdSnapshot.is_deleted.is_(False),
        )

    def get_by_date_range(self, client_id: str, start: date, end: date) -> List[WeeklyAdSnapshot]:
        """Snapshots whose week overlaps [start, end]."""
        return (
            self._range_query(client_id, start, end)
            .order_by(WeeklyAdSnapshot.week_start.asc(), WeeklyAdSnapshot.ad_id.asc())
            .all()
        )

    def get_existing_week_starts(self, client_id: str, start: date, end: date) -> Set[date]:
        rows = (
            self._range_query(client_id, start, end)
            .with_entities(WeeklyAdSnapshot.week_start)
            .distinct()
            .all()
        )
        return {row[0] for row in rows}

    def get_creative_ids(self, client_id: str, start: date, end: date) -> List[str]:
        rows = (
            self._range_query(client_id, start, end)
            .filter(WeeklyAdSnapshot.creative_id.isnot(None))
            .with_entities(WeeklyAdSnapshot.creative_id)
            .distinct()
            .all()
        )
        return sorted(row[0] for row in rows)

    def upsert_many(self, snapshots: Iterable[Dict[str, Any]]) -> int:
        """Insert or overwrite snapshots keyed by (client_id, ad_id, week_start).

        Re-saving a week refreshes saved_at and revives a soft-deleted row.
        A concurrent writer inserting the same key first makes the commit hit
        the unique constraint; the batch is then re-applied as updates.
        Any other database error rolls the session back before propagating,
        so the caller can keep using the session for the next batch.

        Returns:
            Number of rows written
        """
        snapshots = list(snapshots)
        if not snapshots:
            return 0

        try:
            written = self._apply(snapshots)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning("[SNAPSHOT_STORE] Concurrent insert detected, re-applying %d snapshots", len(snapshots))
            written = self._commit_retry(snapshots)
        except SQLAlchemyError:
            self.db.rollback()
            logger.error("[SNAPSHOT_STORE] Upsert of %d snapshots failed, session rolled back", len(snapshots))
            raise

        logger.info("[SNAPSHOT_STORE] Upserted %d weekly snapshots", written)
        return written

    def _commit_retry(self, snapshots: List[Dict[str, Any]]) -> int:
        try:
            written = self._apply(snapshots)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return written

    def _apply(self, snapshots: List[Dict[str, Any]]) -> int:
        now = utcnow()
        keys = {(s["client_id"], s["ad_id"], s["week_start"]) for s in snapshots}

        existing = {
            (row.client_id, row.ad_id, row.week_start): row
            for row in self.db.query(WeeklyAdSnapshot).filter(
                WeeklyAdSnapshot.client_id.in_(sorted({k[0] for k in keys})),
                WeeklyAdSnapshot.ad_id.in_(sorted({k[1] for k in keys})),
                WeeklyAdSnapshot.week_start.in_(sorted({k[2] for k in keys})),
            )
        }

        written = 0
        for data in snapshots:
            key = (data["client_id"], data["ad_id"], data["week_start"])
            row = existing.get(key)
            if row is None:
                row = WeeklyAdSnapshot(
                    client_id=data["client_id"],
                    ad_id=data["ad_id"],
                    week_start=data["week_start"],
                )
                self.db.add(row)
                existing[key] = row

            for field in _UPDATABLE_FIELDS:
                if field in data:
                    setattr(row, field, data[field])
            row.saved_at = now
            row.is_deleted = False
            row.deleted_at = None
            written += 1
        return written

    def soft_delete_range(self, client_id: str, start: date, end: date) -> int:
        now = utcnow()
        count = self._range_query(client_id, start, end).update(
            {WeeklyAdSnapshot.is_deleted: True, WeeklyAdSnapshot.deleted_at: now},
            synchronize_session=False,
        )
        self.db.commit()
        logger.info("[SNAPSHOT_STORE] Soft-deleted %d snapshots for client %s", count, client_id)
        return count

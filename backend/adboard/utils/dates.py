"""Calendar week helpers for weekly ad snapshots.

WHAT:
    Splits a date range into Monday-start calendar weeks and parses the
    YYYY-MM-DD strings used throughout the API.

WHY:
    Snapshots are keyed by week_start. The sync scheduler and the
    fetch-and-save routine must derive the exact same week list or the
    missing-week diff would never converge.

REFERENCES:
    - adboard/services/weekly_sync_service.py (expected weeks, per-week fetch)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import List

from adboard.errors import ValidationError


DATE_FORMAT = "%Y-%m-%d"

# A week belongs to the range when more than this many of its days overlap it.
MIN_OVERLAP_DAYS = 3


@dataclass(frozen=True)
class WeekPeriod:
    year: int
    week_number: int
    week_start: date
    week_end: date

    def as_dict(self) -> dict:
        return {
            "year": self.year,
            "weekNumber": self.week_number,
            "weekStart": format_date(self.week_start),
            "weekEnd": format_date(self.week_end),
        }


def parse_date(value) -> date:
    """Parse a YYYY-MM-DD string (or pass through a date).

    Raises:
        ValidationError: If the value is not a valid calendar date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value), DATE_FORMAT).date()
    except ValueError as exc:
        raise ValidationError(f"Invalid date '{value}', expected YYYY-MM-DD") from exc


def format_date(value: date) -> str:
    return value.strftime(DATE_FORMAT)


def week_start_for(day: date) -> date:
    """Monday on or before `day`."""
    return day - timedelta(days=day.weekday())


def current_week_start(today: date | None = None) -> date:
    return week_start_for(today or date.today())


def get_month_weeks(start: date, end: date) -> List[WeekPeriod]:
    """Split [start, end] into Monday-Sunday weeks.

    WHAT:
        Walks from the Monday on or before `start` in 7-day steps while the
        week start is still <= `end`.
    WHY:
        Partial edge weeks with 3 days or fewer inside the range are left out
        so a month boundary does not pull in a week that mostly belongs to the
        neighbouring month.

    Returns:
        WeekPeriod list ordered by week_start (ISO year / week number).
    """
    if start > end:
        raise ValidationError("start date must be on or before end date")

    weeks: List[WeekPeriod] = []
    week_start = week_start_for(start)

    while week_start <= end:
        week_end = week_start + timedelta(days=6)

        overlap_start = max(week_start, start)
        overlap_end = min(week_end, end)
        overlap_days = (overlap_end - overlap_start).days + 1

        if overlap_days > MIN_OVERLAP_DAYS:
            iso_year, iso_week, _ = week_start.isocalendar()
            weeks.append(WeekPeriod(
                year=iso_year,
                week_number=iso_week,
                week_start=week_start,
                week_end=week_end,
            ))

        week_start += timedelta(days=7)

    return weeks


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

"""
Week Period Tests (Unit)
========================

WHAT: Unit tests for splitting a date range into Monday-start weeks.
WHY: The sync scheduler diffs these weeks against stored snapshots; an off-by-one
here means a week is either refetched forever or never fetched.

REFERENCES:
- backend/adboard/utils/dates.py:get_month_weeks
"""

from datetime import date

import pytest

from adboard.errors import ValidationError
from adboard.utils.dates import get_month_weeks, parse_date, week_start_for


def test_month_includes_edge_weeks_with_four_or_more_days() -> None:
    weeks = get_month_weeks(date(2025, 1, 1), date(2025, 1, 31))

    assert [w.week_start for w in weeks] == [
        date(2024, 12, 30),
        date(2025, 1, 6),
        date(2025, 1, 13),
        date(2025, 1, 20),
        date(2025, 1, 27),
    ]
    assert weeks[0].week_end == date(2025, 1, 5)


def test_edge_week_with_two_days_is_left_out() -> None:
    weeks = get_month_weeks(date(2025, 2, 1), date(2025, 2, 28))

    assert weeks[0].week_start == date(2025, 2, 3)
    assert weeks[-1].week_start == date(2025, 2, 24)
    assert len(weeks) == 4


def test_exactly_three_days_is_not_enough() -> None:
    assert get_month_weeks(date(2025, 1, 3), date(2025, 1, 5)) == []


def test_four_days_uses_iso_year_of_week_start() -> None:
    (week,) = get_month_weeks(date(2025, 1, 2), date(2025, 1, 5))

    assert week.week_start == date(2024, 12, 30)
    assert (week.year, week.week_number) == (2025, 1)
    assert week.as_dict() == {
        "year": 2025,
        "weekNumber": 1,
        "weekStart": "2024-12-30",
        "weekEnd": "2025-01-05",
    }


def test_start_after_end_rejected() -> None:
    with pytest.raises(ValidationError):
        get_month_weeks(date(2025, 2, 1), date(2025, 1, 1))


def test_week_start_for_sunday_is_previous_monday() -> None:
    assert week_start_for(date(2025, 1, 12)) == date(2025, 1, 6)
    assert week_start_for(date(2025, 1, 6)) == date(2025, 1, 6)


@pytest.mark.parametrize("value", ["2025-02-30", "2025/01/01", "", None])
def test_parse_date_rejects_invalid_values(value) -> None:
    with pytest.raises(ValidationError):
        parse_date(value)

"""Unit tests for cadence arithmetic"""

import pytest
from datetime import datetime, timedelta, timezone
from autopay_engine.utils.date_utils import add_cadence, add_months, as_utc, next_run_after

START = datetime(2026, 1, 31, 9, 0, tzinfo=timezone.utc)


def test_daily_and_weekly_cadence():
    assert add_cadence(START, "daily") == START + timedelta(days=1)
    assert add_cadence(START, "weekly") == START + timedelta(days=7)


def test_monthly_clamps_to_month_end():
    """Test Jan 31 -> Feb 28, and Feb 29 in a leap year"""
    assert add_cadence(START, "monthly") == datetime(2026, 2, 28, 9, 0, tzinfo=timezone.utc)
    assert add_months(datetime(2028, 1, 31, tzinfo=timezone.utc), 1) == datetime(2028, 2, 29, tzinfo=timezone.utc)


def test_monthly_rolls_over_year():
    assert add_months(datetime(2026, 12, 15, tzinfo=timezone.utc), 1) == datetime(2027, 1, 15, tzinfo=timezone.utc)


def test_unknown_cadence():
    with pytest.raises(ValueError):
        add_cadence(START, "hourly")


def test_next_run_counts_from_schedule_not_completion():
    """Test a run finishing late does not drift the schedule"""
    scheduled = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    finished = scheduled + timedelta(hours=2)

    assert next_run_after(scheduled, "daily", finished) == datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def test_next_run_skips_missed_periods():
    scheduled = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    now = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)

    assert next_run_after(scheduled, "daily", now) == datetime(2026, 3, 5, 9, 0, tzinfo=timezone.utc)


def test_as_utc_treats_naive_as_utc():
    naive = datetime(2026, 3, 1, 9, 0)

    assert as_utc(naive) == datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    assert as_utc(naive).tzinfo == timezone.utc


def test_monthly_keeps_anchor_day_after_short_month():
    """Test Jan 31 -> Feb 28 -> Mar 31 -> Apr 30 instead of settling on the 28th"""
    anchor = START
    runs = [anchor]
    for _ in range(3):
        runs.append(next_run_after(runs[-1], "monthly", runs[-1], anchor=anchor))

    assert [run.day for run in runs] == [31, 28, 31, 30]
    assert runs[-1] == datetime(2026, 4, 30, 9, 0, tzinfo=timezone.utc)


def test_monthly_anchor_skips_missed_months():
    anchor = START
    scheduled = datetime(2026, 2, 28, 9, 0, tzinfo=timezone.utc)
    now = datetime(2026, 4, 2, 12, 0, tzinfo=timezone.utc)

    assert next_run_after(scheduled, "monthly", now, anchor=anchor) == datetime(2026, 4, 30, 9, 0, tzinfo=timezone.utc)

"""
Business-day calendar tests.

Calendar anchor: 2026-03-02 is a Monday; 2026-03-07/08 is a weekend.
"""

from datetime import date, datetime

import pytest

from app.services.schedule_calendar import (
    add_business_days,
    add_calendar_days,
    business_day_diff,
    end_for_duration,
    is_business_day,
    iter_business_days,
    next_business_day,
    parse_iso,
    sub_business_days,
    to_iso,
)

MON = date(2026, 3, 2)
FRI = date(2026, 3, 6)
SAT = date(2026, 3, 7)
SUN = date(2026, 3, 8)
NEXT_MON = date(2026, 3, 9)


class TestIsBusinessDay:
    def test_weekdays(self):
        assert all(is_business_day(date(2026, 3, d)) for d in range(2, 7))

    def test_weekend(self):
        assert not is_business_day(SAT)
        assert not is_business_day(SUN)


class TestAddBusinessDays:
    def test_within_week(self):
        assert add_business_days(MON, 4) == FRI

    def test_skips_weekend(self):
        assert add_business_days(FRI, 1) == NEXT_MON

    def test_from_weekend(self):
        assert add_business_days(SAT, 1) == NEXT_MON

    def test_zero_returns_start_even_on_weekend(self):
        assert add_business_days(SAT, 0) == SAT

    def test_negative(self):
        assert add_business_days(NEXT_MON, -1) == FRI
        assert sub_business_days(NEXT_MON, 5) == MON

    def test_round_trip_with_diff(self):
        for n in range(0, 25):
            assert business_day_diff(add_business_days(MON, n), MON) == n


class TestBusinessDayDiff:
    def test_same_day(self):
        assert business_day_diff(MON, MON) == 0

    def test_forward_and_backward(self):
        assert business_day_diff(FRI, MON) == 4
        assert business_day_diff(MON, FRI) == -4

    def test_over_weekend(self):
        assert business_day_diff(NEXT_MON, FRI) == 1


class TestHelpers:
    def test_end_for_duration(self):
        assert end_for_duration(MON, 5) == FRI
        assert end_for_duration(MON, 6) == NEXT_MON

    def test_end_for_duration_clamps_to_one_day(self):
        assert end_for_duration(MON, 0) == MON

    def test_next_business_day(self):
        assert next_business_day(SAT) == NEXT_MON
        assert next_business_day(MON) == MON

    def test_calendar_days_ignore_weekends(self):
        assert add_calendar_days(FRI, 2) == SUN

    def test_iter_business_days_is_inclusive(self):
        assert list(iter_business_days(FRI, date(2026, 3, 10))) == [
            FRI, NEXT_MON, date(2026, 3, 10),
        ]


class TestIsoFormat:
    def test_to_iso(self):
        assert to_iso(MON) == "2026-03-02"
        assert to_iso(None) is None

    def test_parse(self):
        assert parse_iso("2026-03-02") == MON
        assert parse_iso(datetime(2026, 3, 2, 14, 30)) == MON
        assert parse_iso(MON) == MON
        assert parse_iso("") is None
        assert parse_iso(None) is None

    def test_parse_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_iso("not-a-date")

"""
Tests for the schedule calculator
=================================

Pure next-run arithmetic in a patient's fixed UTC offset.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from apps.murphy.backend.src.errors import ValidationFailure
from apps.murphy.backend.src.scheduling import calculator

BOGOTA = -300


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════════
# NEXT RUN
# ═══════════════════════════════════════════════════════════════════════════════


class TestNextRun:
    def test_later_today(self):
        # 10:00 local; 18:30 local is 23:30 UTC the same day
        assert calculator.next_run("18:30", BOGOTA, utc(2025, 3, 10, 15, 0)) == utc(2025, 3, 10, 23, 30)

    def test_already_passed_rolls_to_tomorrow(self):
        assert calculator.next_run("08:00", BOGOTA, utc(2025, 3, 10, 15, 0)) == utc(2025, 3, 11, 13, 0)

    def test_exact_now_rolls_to_tomorrow(self):
        now = utc(2025, 3, 10, 13, 0)  # 08:00 local
        assert calculator.next_run("08:00", BOGOTA, now) == utc(2025, 3, 11, 13, 0)

    def test_one_minute_before_fires_today(self):
        now = utc(2025, 3, 10, 12, 59)
        assert calculator.next_run("08:00", BOGOTA, now) == utc(2025, 3, 10, 13, 0)

    def test_local_day_differs_from_utc_day(self):
        # 02:00 UTC on the 11th is 21:00 local on the 10th
        now = utc(2025, 3, 11, 2, 0)
        assert calculator.next_run("22:00", BOGOTA, now) == utc(2025, 3, 11, 3, 0)

    def test_positive_offset(self):
        # UTC+05:30: 09:00 local is 03:30 UTC
        now = utc(2025, 3, 10, 4, 0)
        assert calculator.next_run("09:00", 330, now) == utc(2025, 3, 11, 3, 30)

    def test_seconds_in_now_do_not_leak(self):
        now = utc(2025, 3, 10, 15, 0, 42, 123)
        result = calculator.next_run("18:30", BOGOTA, now)
        assert (result.second, result.microsecond) == (0, 0)

    def test_idempotent(self):
        now = utc(2025, 3, 10, 15, 0)
        assert calculator.next_run("07:15", BOGOTA, now) == calculator.next_run("07:15", BOGOTA, now)

    @pytest.mark.parametrize("hhmm", ["00:00", "06:45", "12:00", "23:59"])
    @pytest.mark.parametrize("offset", [-720, -300, 0, 330, 840])
    @pytest.mark.parametrize("minute_of_day", [0, 1, 599, 600, 1439])
    def test_strictly_after_now_and_smallest(self, hhmm, offset, minute_of_day):
        now = utc(2025, 3, 10) + timedelta(minutes=minute_of_day)
        result = calculator.next_run(hhmm, offset, now)
        assert now < result <= now + timedelta(days=1)
        local = result.astimezone(calculator.patient_timezone(offset))
        assert local.strftime("%H:%M") == hhmm
        assert result - timedelta(days=1) <= now

    @pytest.mark.parametrize("bad", ["8:00", "24:00", "12:60", "noon", "", "12:00:00", "08:00\n", " 08:00"])
    def test_invalid_time_is_validation_failure(self, bad):
        with pytest.raises(ValidationFailure) as exc_info:
            calculator.next_run(bad, BOGOTA, utc(2025, 3, 10, 15, 0))
        assert exc_info.value.field == "scheduled_time"

    def test_offset_out_of_range(self):
        with pytest.raises(ValidationFailure):
            calculator.next_run("08:00", 900, utc(2025, 3, 10, 15, 0))

    def test_naive_now_rejected(self):
        with pytest.raises(ValueError):
            calculator.next_run("08:00", BOGOTA, datetime(2025, 3, 10, 15, 0))


# ═══════════════════════════════════════════════════════════════════════════════
# LOCAL DAY HELPERS
# ═══════════════════════════════════════════════════════════════════════════════


class TestLocalDay:
    def test_run_on_date(self):
        assert calculator.run_on_date("09:00", BOGOTA, date(2025, 3, 12)) == utc(2025, 3, 12, 14, 0)

    def test_local_date_before_utc_midnight(self):
        assert calculator.local_date(utc(2025, 3, 11, 3, 0), BOGOTA) == date(2025, 3, 10)

    def test_local_day_bounds(self):
        start, end = calculator.local_day_bounds(utc(2025, 3, 11, 3, 0), BOGOTA)
        assert start == utc(2025, 3, 10, 5, 0)
        assert end == utc(2025, 3, 11, 5, 0)

"""
Schedule calculator.

Pure functions that turn a patient wall-clock ``HH:MM`` plus a fixed UTC offset
into absolute UTC instants. Nothing here reads the machine clock or the
machine's local timezone; ``now`` is always an explicit argument.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Tuple

from apps.murphy.backend.src.errors import ValidationFailure
from apps.murphy.backend.src.models.schedule import parse_time_of_day

MAX_OFFSET_MINUTES = 14 * 60


def patient_timezone(utc_offset_minutes: int) -> timezone:
    if not isinstance(utc_offset_minutes, int) or abs(utc_offset_minutes) > MAX_OFFSET_MINUTES:
        raise ValidationFailure(
            f"utc offset must be an integer within ±{MAX_OFFSET_MINUTES} minutes",
            field="utc_offset_minutes",
        )
    return timezone(timedelta(minutes=utc_offset_minutes))


def _require_aware(now_utc: datetime) -> datetime:
    if now_utc.tzinfo is None or now_utc.utcoffset() is None:
        raise ValueError("now_utc must be timezone-aware")
    return now_utc


def _parse(local_time_of_day: str) -> Tuple[int, int]:
    try:
        return parse_time_of_day(local_time_of_day)
    except ValueError as exc:
        raise ValidationFailure(str(exc), field="scheduled_time") from exc


def next_run(local_time_of_day: str, utc_offset_minutes: int, now_utc: datetime) -> datetime:
    """
    Return the soonest UTC instant strictly after ``now_utc`` whose wall-clock
    time in the patient's offset is ``local_time_of_day``.

    A candidate equal to ``now_utc`` counts as already passed and rolls to the
    next local day.
    """
    hour, minute = _parse(local_time_of_day)
    tz = patient_timezone(utc_offset_minutes)
    local_now = _require_aware(now_utc).astimezone(tz)

    candidate = local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= local_now:
        candidate += timedelta(days=1)
    return candidate.astimezone(timezone.utc)


def run_on_date(local_time_of_day: str, utc_offset_minutes: int, on_date: date) -> datetime:
    """Absolute UTC instant of ``local_time_of_day`` on a specific local date."""
    hour, minute = _parse(local_time_of_day)
    tz = patient_timezone(utc_offset_minutes)
    local = datetime.combine(on_date, time(hour=hour, minute=minute), tzinfo=tz)
    return local.astimezone(timezone.utc)


def local_date(now_utc: datetime, utc_offset_minutes: int) -> date:
    return _require_aware(now_utc).astimezone(patient_timezone(utc_offset_minutes)).date()


def local_day_bounds(now_utc: datetime, utc_offset_minutes: int) -> Tuple[datetime, datetime]:
    """UTC ``[start, end)`` of the patient's local calendar day containing ``now_utc``."""
    tz = patient_timezone(utc_offset_minutes)
    day = _require_aware(now_utc).astimezone(tz).date()
    start = datetime.combine(day, time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), (start + timedelta(days=1)).astimezone(timezone.utc)

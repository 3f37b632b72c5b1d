from __future__ import annotations

import re
import uuid
from datetime import date, datetime
from typing import Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from .enums import Category, Channel, Frequency

_TIME_RE = re.compile(r"([01]\d|2[0-3]):([0-5]\d)")


def parse_time_of_day(value: str) -> Tuple[int, int]:
    """Parse a strict zero-padded ``HH:MM`` string into ``(hour, minute)``."""
    match = _TIME_RE.fullmatch(value or "")
    if not match:
        raise ValueError(f"invalid time of day '{value}', expected HH:MM")
    return int(match.group(1)), int(match.group(2))


class OutreachSchedule(BaseModel):
    """
    Recurring or one-off outreach reminder for one patient.

    ``next_run`` is derived from ``scheduled_time`` and ``utc_offset_minutes``;
    it is recomputed on every fire or edit and never trusted across offset changes.
    """

    schedule_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    patient_id: str
    channel: Channel
    category: Category
    frequency: Frequency
    scheduled_time: str
    scheduled_date: Optional[date] = None
    is_active: bool = True
    utc_offset_minutes: int
    next_run: Optional[datetime] = None
    last_fired_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_at: Optional[datetime] = None

    @field_validator("scheduled_time")
    @classmethod
    def _check_time(cls, value: str) -> str:
        parse_time_of_day(value)
        return value

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.channel.value, self.category.value, self.frequency.value)

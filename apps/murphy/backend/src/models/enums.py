from __future__ import annotations

from enum import Enum


class Channel(str, Enum):
    CALL = "call"
    MESSAGE = "message"


class Category(str, Enum):
    """Health-data domain an outreach schedule targets."""

    GLUCOMETRY = "glucometry"
    INSULIN = "insulin"
    WELLNESS = "wellness"
    GENERAL = "general"


class Frequency(str, Enum):
    DAILY = "daily"
    ONCE = "once"


class InsulinType(str, Enum):
    RAPID = "rapid"
    BASAL = "basal"


class MeasurementCategory(str, Enum):
    """Record category a conversational tool writes to."""

    GLUCOSE = "glucose"
    INSULIN = "insulin"
    SLEEP = "sleep"
    STRESS = "stress"
    DIZZINESS = "dizziness"


class GlucoseSlot(str, Enum):
    BEFORE_BREAKFAST = "before_breakfast"
    AFTER_BREAKFAST = "after_breakfast"
    BEFORE_LUNCH = "before_lunch"
    AFTER_LUNCH = "after_lunch"
    BEFORE_DINNER = "before_dinner"
    AFTER_DINNER = "after_dinner"


class SessionStatus(str, Enum):
    INITIATED = "initiated"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.FAILED})

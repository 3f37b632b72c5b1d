"""
Domain models for the outreach layer.

Usage:
    from apps.murphy.backend.src.models import OutreachSchedule, ConversationSession
"""

from .enums import (
    Category,
    Channel,
    Frequency,
    GlucoseSlot,
    InsulinType,
    MeasurementCategory,
    SessionStatus,
    TERMINAL_STATUSES,
)
from .patient import InsulinRegimen, Patient
from .records import (
    AnomalyFlag,
    DizzinessRecord,
    GlucoseRecord,
    HealthRecord,
    InsulinDoseRecord,
    MeasurementDraft,
    SleepRecord,
    StressRecord,
)
from .schedule import OutreachSchedule, parse_time_of_day
from .session import ConversationSession

__all__ = [
    "AnomalyFlag",
    "Category",
    "Channel",
    "ConversationSession",
    "DizzinessRecord",
    "Frequency",
    "GlucoseRecord",
    "GlucoseSlot",
    "HealthRecord",
    "InsulinDoseRecord",
    "InsulinRegimen",
    "InsulinType",
    "MeasurementCategory",
    "MeasurementDraft",
    "OutreachSchedule",
    "Patient",
    "SessionStatus",
    "SleepRecord",
    "StressRecord",
    "TERMINAL_STATUSES",
    "parse_time_of_day",
]

"""Health measurement records written by conversational tools."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, Field

from .enums import GlucoseSlot, InsulinType, MeasurementCategory


def _new_id() -> str:
    return uuid.uuid4().hex


class HealthRecord(BaseModel):
    record_id: str = Field(default_factory=_new_id)
    patient_id: str
    recorded_at: datetime
    notes: Optional[str] = None

    category: ClassVar[MeasurementCategory]
    primary_field: ClassVar[str]

    @property
    def primary_value(self) -> Any:
        return getattr(self, self.primary_field)


class GlucoseRecord(HealthRecord):
    category: ClassVar[MeasurementCategory] = MeasurementCategory.GLUCOSE
    primary_field: ClassVar[str] = "value"

    value: float
    slot: Optional[GlucoseSlot] = None


class InsulinDoseRecord(HealthRecord):
    category: ClassVar[MeasurementCategory] = MeasurementCategory.INSULIN
    primary_field: ClassVar[str] = "dose"

    dose: float
    insulin_type: InsulinType


class SleepRecord(HealthRecord):
    category: ClassVar[MeasurementCategory] = MeasurementCategory.SLEEP
    primary_field: ClassVar[str] = "hours"

    hours: float
    quality: int = 5
    local_date: date


class StressRecord(HealthRecord):
    category: ClassVar[MeasurementCategory] = MeasurementCategory.STRESS
    primary_field: ClassVar[str] = "level"

    level: int


class DizzinessRecord(HealthRecord):
    category: ClassVar[MeasurementCategory] = MeasurementCategory.DIZZINESS
    primary_field: ClassVar[str] = "severity"

    severity: int
    symptoms: List[str] = Field(default_factory=list)
    duration_minutes: Optional[float] = None


RECORD_TYPES: Dict[MeasurementCategory, type] = {
    cls.category: cls
    for cls in (GlucoseRecord, InsulinDoseRecord, SleepRecord, StressRecord, DizzinessRecord)
}


class MeasurementDraft(BaseModel):
    """
    Payload a single tool invocation proposes to persist.

    Exists only for the duration of one tool call: it either becomes a
    persisted record or is rejected by validation.
    """

    patient_id: str
    category: MeasurementCategory
    payload: Dict[str, Any]
    notes: Optional[str] = None
    proposed_at: datetime

    def to_record(self, **extra: Any) -> HealthRecord:
        record_cls = RECORD_TYPES[self.category]
        return record_cls(
            patient_id=self.patient_id,
            recorded_at=self.proposed_at,
            notes=self.notes,
            **self.payload,
            **extra,
        )


class AnomalyFlag(BaseModel):
    """
    Non-blocking annotation on a successful write.

    The conversational layer uses ``follow_up`` to ask a confirmation question on
    a later turn; the value has already been persisted.
    """

    category: MeasurementCategory
    field: str
    value: Any
    reason: str
    threshold: Optional[float] = None
    follow_up: str

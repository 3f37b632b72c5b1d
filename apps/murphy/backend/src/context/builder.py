"""
Patient Context Builder
=======================

Assembles the flat snapshot of a patient's recent history that seeds a call or
WhatsApp conversation. Every field is always present because the conversational
agent renders each one into its prompt; missing data becomes an explicit
placeholder string.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Dict, List, Optional

from opentelemetry import trace
from pydantic import BaseModel

from apps.murphy.backend.src.context.insulin import insulin_day_status
from apps.murphy.backend.src.errors import NotFoundFailure
from apps.murphy.backend.src.models import (
    GlucoseRecord,
    HealthRecord,
    InsulinDoseRecord,
    InsulinType,
    MeasurementCategory,
    Patient,
    SleepRecord,
)
from apps.murphy.backend.src.stores.base import HealthRecordStore, PatientDirectory
from utils.ml_logging import get_logger

logger = get_logger("context.builder")
tracer = trace.get_tracer(__name__)

NO_RECORDS = "No records"
UNKNOWN = "unknown"


class PatientContext(BaseModel):
    """Conversation-seed variables, one string per prompt slot."""

    patient_id: str
    patient_name: str
    patient_age: str
    diabetes_type: str
    diagnosis_year: str
    phone_number: Optional[str] = None
    recent_glucometries: str
    recent_sleep: str
    recent_insulin: str
    insulin_rapid_schedule: str
    insulin_basal_schedule: str

    def as_dynamic_variables(self) -> Dict[str, str]:
        return self.model_dump(exclude={"phone_number"})


def format_relative(recorded_at: datetime, now: datetime) -> str:
    minutes = int((now - recorded_at).total_seconds() // 60)
    if minutes < 60:
        return f"{max(minutes, 0)} min ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    days = hours // 24
    if days == 1:
        return "yesterday"
    if days < 7:
        return f"{days} days ago"
    return recorded_at.strftime("%d %b")


def _join(items: List[str]) -> str:
    return ", ".join(items) if items else NO_RECORDS


class PatientContextBuilder:
    def __init__(
        self,
        patients: PatientDirectory,
        records: HealthRecordStore,
        *,
        history_limit: int = 10,
        default_utc_offset_minutes: int = -300,
    ):
        self.patients = patients
        self.records = records
        self.history_limit = history_limit
        self.default_utc_offset_minutes = default_utc_offset_minutes

    def offset_for(self, patient: Patient) -> int:
        if patient.utc_offset_minutes is None:
            return self.default_utc_offset_minutes
        return patient.utc_offset_minutes

    def _glucose(self, records: List[HealthRecord], now: datetime) -> str:
        return _join(
            [
                f"{r.value:g} mg/dL ({format_relative(r.recorded_at, now)})"
                for r in records
                if isinstance(r, GlucoseRecord)
            ]
        )

    def _sleep(self, records: List[HealthRecord]) -> str:
        return _join(
            [
                f"{r.hours:g} hours ({r.local_date.isoformat()})"
                for r in records
                if isinstance(r, SleepRecord)
            ]
        )

    def _insulin(self, records: List[HealthRecord], now: datetime) -> str:
        return _join(
            [
                f"{r.dose:g} units {r.insulin_type.value} ({format_relative(r.recorded_at, now)})"
                for r in records
                if isinstance(r, InsulinDoseRecord)
            ]
        )

    async def build_context(self, patient_id: str, now: datetime) -> PatientContext:
        """
        Read the profile, recent records per category and insulin day status,
        then merge them into one :class:`PatientContext`.

        Raises NotFoundFailure for an unknown patient.
        """
        with tracer.start_as_current_span(
            "context.build", attributes={"patient.id": patient_id}
        ):
            patient = await asyncio.to_thread(self.patients.get, patient_id)
            if patient is None:
                raise NotFoundFailure(f"patient {patient_id} not found")
            offset = self.offset_for(patient)

            glucose, sleep, insulin, rapid, basal = await asyncio.gather(
                asyncio.to_thread(
                    self.records.recent, patient_id, MeasurementCategory.GLUCOSE, self.history_limit
                ),
                asyncio.to_thread(
                    self.records.recent, patient_id, MeasurementCategory.SLEEP, self.history_limit
                ),
                asyncio.to_thread(
                    self.records.recent, patient_id, MeasurementCategory.INSULIN, self.history_limit
                ),
                asyncio.to_thread(
                    insulin_day_status, self.records, patient_id, InsulinType.RAPID, now, offset
                ),
                asyncio.to_thread(
                    insulin_day_status, self.records, patient_id, InsulinType.BASAL, now, offset
                ),
            )

            context = PatientContext(
                patient_id=patient.patient_id,
                patient_name=patient.full_name or "Patient",
                patient_age=str(patient.age) if patient.age is not None else UNKNOWN,
                diabetes_type=patient.diabetes_type or "not specified",
                diagnosis_year=(
                    str(patient.diagnosis_year) if patient.diagnosis_year else "not specified"
                ),
                phone_number=patient.phone_number,
                recent_glucometries=self._glucose(glucose, now),
                recent_sleep=self._sleep(sleep),
                recent_insulin=self._insulin(insulin, now),
                insulin_rapid_schedule=rapid.text,
                insulin_basal_schedule=basal.text,
            )
            logger.debug(
                "Built context for patient %s (glucose=%d sleep=%d insulin=%d)",
                patient_id,
                len(glucose),
                len(sleep),
                len(insulin),
            )
            return context

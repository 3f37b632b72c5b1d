"""
In-memory store implementations.

Used for tests and local development. Each repository guards its state with a
single lock so the compare-and-set operations stay atomic across threads.
Stored models are copied on the way in and out so callers never share mutable
state with the store.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from datetime import date, datetime
from typing import Any, Collection, Dict, List, Optional, Tuple

from apps.murphy.backend.src.models import (
    Channel,
    ConversationSession,
    HealthRecord,
    InsulinDoseRecord,
    InsulinRegimen,
    InsulinType,
    MeasurementCategory,
    OutreachSchedule,
    Patient,
    SessionStatus,
    SleepRecord,
    TERMINAL_STATUSES,
)
from apps.murphy.backend.src.stores.base import normalize_phone


# ═══════════════════════════════════════════════════════════════════════════════
# PATIENTS & HEALTH RECORDS (external store stand-ins)
# ═══════════════════════════════════════════════════════════════════════════════


class InMemoryPatientDirectory:
    def __init__(self, patients: Optional[List[Patient]] = None):
        self._lock = threading.Lock()
        self._patients: Dict[str, Patient] = {}
        for patient in patients or []:
            self.add(patient)

    def add(self, patient: Patient) -> Patient:
        with self._lock:
            self._patients[patient.patient_id] = patient.model_copy(deep=True)
        return patient

    def get(self, patient_id: str) -> Optional[Patient]:
        with self._lock:
            patient = self._patients.get(patient_id)
            return patient.model_copy(deep=True) if patient else None

    def find_by_phone(self, phone: str) -> Optional[Patient]:
        wanted = normalize_phone(phone)
        if not wanted:
            return None
        with self._lock:
            for patient in self._patients.values():
                if normalize_phone(patient.phone_number) == wanted:
                    return patient.model_copy(deep=True)
        return None

    def is_coadmin(self, coadmin_id: str, patient_id: str) -> bool:
        patient = self.get(patient_id)
        return bool(patient and coadmin_id in patient.coadmin_ids)


class InMemoryHealthRecordStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[Tuple[str, MeasurementCategory], Dict[str, HealthRecord]] = {}
        self._regimens: Dict[Tuple[str, InsulinType], InsulinRegimen] = {}

    def set_regimen(self, regimen: InsulinRegimen) -> None:
        with self._lock:
            self._regimens[(regimen.patient_id, regimen.insulin_type)] = regimen.model_copy()

    def add(self, record: HealthRecord) -> HealthRecord:
        with self._lock:
            bucket = self._records.setdefault((record.patient_id, record.category), {})
            bucket[record.record_id] = record.model_copy(deep=True)
        return record

    def update(self, record: HealthRecord) -> HealthRecord:
        with self._lock:
            bucket = self._records.setdefault((record.patient_id, record.category), {})
            if record.record_id not in bucket:
                raise KeyError(f"record {record.record_id} not found")
            bucket[record.record_id] = record.model_copy(deep=True)
        return record

    def _sorted(self, patient_id: str, category: MeasurementCategory) -> List[HealthRecord]:
        bucket = self._records.get((patient_id, category), {})
        return sorted(bucket.values(), key=lambda r: r.recorded_at, reverse=True)

    def latest(self, patient_id: str, category: MeasurementCategory) -> Optional[HealthRecord]:
        with self._lock:
            ordered = self._sorted(patient_id, category)
            return ordered[0].model_copy(deep=True) if ordered else None

    def recent(
        self, patient_id: str, category: MeasurementCategory, limit: int
    ) -> List[HealthRecord]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._sorted(patient_id, category)[:limit]]

    def count_between(
        self,
        patient_id: str,
        category: MeasurementCategory,
        start: datetime,
        end: datetime,
        insulin_type: Optional[InsulinType] = None,
    ) -> int:
        with self._lock:
            count = 0
            for record in self._records.get((patient_id, category), {}).values():
                if not (start <= record.recorded_at < end):
                    continue
                if insulin_type is not None and (
                    not isinstance(record, InsulinDoseRecord) or record.insulin_type != insulin_type
                ):
                    continue
                count += 1
            return count

    def sleep_on(self, patient_id: str, local_date: date) -> Optional[SleepRecord]:
        with self._lock:
            for record in self._sorted(patient_id, MeasurementCategory.SLEEP):
                if isinstance(record, SleepRecord) and record.local_date == local_date:
                    return record.model_copy(deep=True)
        return None

    def insulin_regimen(
        self, patient_id: str, insulin_type: InsulinType
    ) -> Optional[InsulinRegimen]:
        with self._lock:
            regimen = self._regimens.get((patient_id, insulin_type))
            return regimen.model_copy() if regimen else None


# ═══════════════════════════════════════════════════════════════════════════════
# SCHEDULES
# ═══════════════════════════════════════════════════════════════════════════════


class InMemoryScheduleRepository:
    def __init__(self):
        self._lock = threading.Lock()
        self._schedules: Dict[str, OutreachSchedule] = {}

    def add(self, schedule: OutreachSchedule) -> OutreachSchedule:
        with self._lock:
            self._schedules[schedule.schedule_id] = schedule.model_copy(deep=True)
        return schedule

    def get(self, schedule_id: str) -> Optional[OutreachSchedule]:
        with self._lock:
            schedule = self._schedules.get(schedule_id)
            return schedule.model_copy(deep=True) if schedule else None

    def list_for_patient(self, patient_id: str) -> List[OutreachSchedule]:
        with self._lock:
            return [
                s.model_copy(deep=True)
                for s in self._schedules.values()
                if s.patient_id == patient_id
            ]

    def list_active(self) -> List[OutreachSchedule]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self._schedules.values() if s.is_active]

    def update(self, schedule: OutreachSchedule) -> OutreachSchedule:
        with self._lock:
            if schedule.schedule_id not in self._schedules:
                raise KeyError(f"schedule {schedule.schedule_id} not found")
            self._schedules[schedule.schedule_id] = schedule.model_copy(deep=True)
        return schedule

    def delete(self, schedule_id: str) -> bool:
        with self._lock:
            return self._schedules.pop(schedule_id, None) is not None

    def claim(
        self, schedule_id: str, expected_next_run: datetime, changes: Dict[str, Any]
    ) -> Optional[OutreachSchedule]:
        with self._lock:
            current = self._schedules.get(schedule_id)
            if current is None or not current.is_active or current.next_run != expected_next_run:
                return None
            updated = current.model_copy(update=changes, deep=True)
            self._schedules[schedule_id] = updated
            return updated.model_copy(deep=True)


# ═══════════════════════════════════════════════════════════════════════════════
# CONVERSATION SESSIONS
# ═══════════════════════════════════════════════════════════════════════════════


class InMemorySessionRepository:
    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: Dict[str, ConversationSession] = {}

    def create_if_absent(self, session: ConversationSession) -> ConversationSession:
        with self._lock:
            existing = self._sessions.get(session.conversation_id)
            if existing is not None:
                return existing.model_copy(deep=True)
            self._sessions[session.conversation_id] = session.model_copy(deep=True)
            return session

    def get(self, conversation_id: str) -> Optional[ConversationSession]:
        with self._lock:
            session = self._sessions.get(conversation_id)
            return session.model_copy(deep=True) if session else None

    def find_active_by_phone(
        self, phone: str, channel: Channel
    ) -> Optional[ConversationSession]:
        wanted = normalize_phone(phone)
        with self._lock:
            matches = [
                s
                for s in self._sessions.values()
                if s.channel == channel
                and s.status not in TERMINAL_STATUSES
                and normalize_phone(s.phone_number) == wanted
            ]
            if not matches:
                return None
            newest = max(matches, key=lambda s: s.started_at)
            return newest.model_copy(deep=True)

    def transition(
        self,
        conversation_id: str,
        allowed_from: Collection[SessionStatus],
        changes: Dict[str, Any],
    ) -> Optional[ConversationSession]:
        with self._lock:
            current = self._sessions.get(conversation_id)
            if current is None or current.status not in allowed_from:
                return None
            updated = current.model_copy(update=changes, deep=True)
            self._sessions[conversation_id] = updated
            return updated.model_copy(deep=True)

    def list_stale(
        self,
        statuses: Collection[SessionStatus],
        older_than: datetime,
        channel: Optional[Channel] = None,
    ) -> List[ConversationSession]:
        with self._lock:
            return [
                s.model_copy(deep=True)
                for s in self._sessions.values()
                if s.status in statuses
                and s.started_at <= older_than
                and (channel is None or s.channel == channel)
            ]

    def list_due_retries(self, now: datetime) -> List[ConversationSession]:
        with self._lock:
            return [
                s.model_copy(deep=True)
                for s in self._sessions.values()
                if s.retry_due_at is not None and s.retry_due_at <= now and not s.retry_dispatched
            ]

    def mark_retry_dispatched(self, conversation_id: str) -> bool:
        with self._lock:
            current = self._sessions.get(conversation_id)
            if current is None or current.retry_dispatched or current.retry_due_at is None:
                return False
            self._sessions[conversation_id] = current.model_copy(update={"retry_dispatched": True})
            return True


# ═══════════════════════════════════════════════════════════════════════════════
# IDEMPOTENCY
# ═══════════════════════════════════════════════════════════════════════════════


class InMemoryIdempotencyGuard:
    """Remembers the most recent ``capacity`` keys."""

    def __init__(self, capacity: int = 5000):
        self.capacity = capacity
        self._lock = threading.Lock()
        self._seen: "OrderedDict[str, None]" = OrderedDict()

    def first_seen(self, key: str) -> bool:
        with self._lock:
            if key in self._seen:
                self._seen.move_to_end(key)
                return False
            self._seen[key] = None
            if len(self._seen) > self.capacity:
                self._seen.popitem(last=False)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._seen.pop(key, None)

"""
Record store interfaces.

The outreach layer only depends on these protocols. Patient profiles and health
records belong to the external patient-record store; schedules and
conversation sessions are owned here and need atomic conditional updates.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Collection, Dict, List, Optional, Protocol

from apps.murphy.backend.src.models import (
    Channel,
    ConversationSession,
    HealthRecord,
    InsulinRegimen,
    InsulinType,
    MeasurementCategory,
    OutreachSchedule,
    Patient,
    SessionStatus,
    SleepRecord,
)


def normalize_phone(phone: Optional[str]) -> str:
    """Digits only, so ``+57 300-123`` and ``57300123`` compare equal."""
    return "".join(ch for ch in (phone or "") if ch.isdigit())


class PatientDirectory(Protocol):
    def get(self, patient_id: str) -> Optional[Patient]: ...

    def find_by_phone(self, phone: str) -> Optional[Patient]: ...

    def is_coadmin(self, coadmin_id: str, patient_id: str) -> bool: ...


class HealthRecordStore(Protocol):
    def add(self, record: HealthRecord) -> HealthRecord: ...

    def latest(self, patient_id: str, category: MeasurementCategory) -> Optional[HealthRecord]:
        """Most recent record by ``recorded_at`` (not insertion order)."""
        ...

    def recent(
        self, patient_id: str, category: MeasurementCategory, limit: int
    ) -> List[HealthRecord]: ...

    def update(self, record: HealthRecord) -> HealthRecord: ...

    def count_between(
        self,
        patient_id: str,
        category: MeasurementCategory,
        start: datetime,
        end: datetime,
        insulin_type: Optional[InsulinType] = None,
    ) -> int: ...

    def sleep_on(self, patient_id: str, local_date: date) -> Optional[SleepRecord]: ...

    def insulin_regimen(
        self, patient_id: str, insulin_type: InsulinType
    ) -> Optional[InsulinRegimen]: ...


class ScheduleRepository(Protocol):
    def add(self, schedule: OutreachSchedule) -> OutreachSchedule: ...

    def get(self, schedule_id: str) -> Optional[OutreachSchedule]: ...

    def list_for_patient(self, patient_id: str) -> List[OutreachSchedule]: ...

    def list_active(self) -> List[OutreachSchedule]: ...

    def update(self, schedule: OutreachSchedule) -> OutreachSchedule: ...

    def delete(self, schedule_id: str) -> bool: ...

    def claim(
        self, schedule_id: str, expected_next_run: datetime, changes: Dict[str, Any]
    ) -> Optional[OutreachSchedule]:
        """
        Apply ``changes`` only if the schedule is still active and its stored
        ``next_run`` equals ``expected_next_run``. Returns the updated schedule,
        or None when another caller already moved it on.
        """
        ...


class SessionRepository(Protocol):
    def create_if_absent(self, session: ConversationSession) -> ConversationSession: ...

    def get(self, conversation_id: str) -> Optional[ConversationSession]: ...

    def find_active_by_phone(
        self, phone: str, channel: Channel
    ) -> Optional[ConversationSession]: ...

    def transition(
        self,
        conversation_id: str,
        allowed_from: Collection[SessionStatus],
        changes: Dict[str, Any],
    ) -> Optional[ConversationSession]:
        """
        Apply ``changes`` only if the current status is in ``allowed_from``.
        Returns the updated session, or None when the session is missing or in
        another state.
        """
        ...

    def list_stale(
        self,
        statuses: Collection[SessionStatus],
        older_than: datetime,
        channel: Optional[Channel] = None,
    ) -> List[ConversationSession]: ...

    def list_due_retries(self, now: datetime) -> List[ConversationSession]: ...

    def mark_retry_dispatched(self, conversation_id: str) -> bool:
        """Flag a pending retry as dispatched; False if already dispatched."""
        ...


class IdempotencyGuard(Protocol):
    def first_seen(self, key: str) -> bool:
        """True the first time ``key`` is offered, False on every repeat."""
        ...

    def release(self, key: str) -> None:
        """Forget ``key`` so a later redelivery is handled again."""
        ...

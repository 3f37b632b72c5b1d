"""
Outreach Scheduler
==================

CRUD over per-patient outreach schedules plus the "is it due, then mark it
fired" decision. The mark-fired step is a compare-and-set on the schedule's
previous ``next_run``, so two triggers racing on the same schedule produce a
single firing.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import ValidationError

from apps.murphy.backend.src.errors import NotFoundFailure, ValidationFailure
from apps.murphy.backend.src.models import (
    Category,
    Channel,
    Frequency,
    OutreachSchedule,
    Patient,
    parse_time_of_day,
)
from apps.murphy.backend.src.scheduling import calculator
from apps.murphy.backend.src.stores.base import PatientDirectory, ScheduleRepository
from utils.ml_logging import get_logger

logger = get_logger("scheduling.scheduler")

E = TypeVar("E", bound=Enum)

_EDITABLE_FIELDS = {
    "channel",
    "category",
    "frequency",
    "scheduled_time",
    "scheduled_date",
    "is_active",
}


def _coerce_enum(enum_cls: Type[E], value: Any, field: str) -> E:
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationFailure(
            f"invalid {field} '{value}', expected one of: {allowed}", field=field
        ) from exc


def _coerce_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise ValidationFailure(f"invalid scheduled_date '{value}'", field="scheduled_date") from exc


class OutreachScheduler:
    def __init__(
        self,
        schedules: ScheduleRepository,
        patients: PatientDirectory,
        *,
        default_utc_offset_minutes: int = -300,
    ):
        self.schedules = schedules
        self.patients = patients
        self.default_utc_offset_minutes = default_utc_offset_minutes

    # ═══════════════════════════════════════════════════════════════════════════
    # HELPERS
    # ═══════════════════════════════════════════════════════════════════════════

    def _patient(self, patient_id: str) -> Patient:
        patient = self.patients.get(patient_id)
        if patient is None:
            raise NotFoundFailure(f"patient {patient_id} not found")
        return patient

    def _offset_for(self, patient: Patient) -> int:
        if patient.utc_offset_minutes is None:
            return self.default_utc_offset_minutes
        return patient.utc_offset_minutes

    def _compute_next_run(self, schedule: OutreachSchedule, now: datetime) -> Optional[datetime]:
        """First run for a freshly created or edited schedule."""
        if not schedule.is_active:
            return None
        if schedule.frequency == Frequency.ONCE and schedule.scheduled_date is not None:
            run_at = calculator.run_on_date(
                schedule.scheduled_time, schedule.utc_offset_minutes, schedule.scheduled_date
            )
            if run_at <= now:
                raise ValidationFailure(
                    f"scheduled date {schedule.scheduled_date.isoformat()} "
                    f"{schedule.scheduled_time} is in the past",
                    field="scheduled_date",
                )
            return run_at
        return calculator.next_run(schedule.scheduled_time, schedule.utc_offset_minutes, now)

    def _validated(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        clean = dict(fields)
        if "channel" in clean:
            clean["channel"] = _coerce_enum(Channel, clean["channel"], "channel")
        if "category" in clean:
            clean["category"] = _coerce_enum(Category, clean["category"], "category")
        if "frequency" in clean:
            clean["frequency"] = _coerce_enum(Frequency, clean["frequency"], "frequency")
        if "scheduled_time" in clean:
            try:
                parse_time_of_day(clean["scheduled_time"])
            except (ValueError, TypeError) as exc:
                raise ValidationFailure(str(exc), field="scheduled_time") from exc
        if "scheduled_date" in clean:
            clean["scheduled_date"] = _coerce_date(clean["scheduled_date"])
        return clean

    @staticmethod
    def _check_date_frequency(schedule: OutreachSchedule) -> None:
        if schedule.scheduled_date is not None and schedule.frequency != Frequency.ONCE:
            raise ValidationFailure(
                "scheduled_date is only valid for 'once' schedules", field="scheduled_date"
            )

    # ═══════════════════════════════════════════════════════════════════════════
    # CRUD
    # ═══════════════════════════════════════════════════════════════════════════

    def create(
        self,
        patient_id: str,
        *,
        channel: Any,
        category: Any,
        frequency: Any,
        scheduled_time: str,
        now: datetime,
        scheduled_date: Any = None,
        is_active: bool = True,
        created_by: Optional[str] = None,
    ) -> OutreachSchedule:
        """
        Create (or replace) the patient's schedule for a (channel, category,
        frequency) key and compute its first ``next_run``.
        """
        patient = self._patient(patient_id)
        fields = self._validated(
            {
                "channel": channel,
                "category": category,
                "frequency": frequency,
                "scheduled_time": scheduled_time,
                "scheduled_date": scheduled_date,
            }
        )
        try:
            schedule = OutreachSchedule(
                patient_id=patient_id,
                is_active=is_active,
                utc_offset_minutes=self._offset_for(patient),
                created_by=created_by,
                updated_at=now,
                **fields,
            )
        except ValidationError as exc:
            raise ValidationFailure(str(exc)) from exc

        self._check_date_frequency(schedule)
        schedule.next_run = self._compute_next_run(schedule, now)

        existing = next(
            (s for s in self.schedules.list_for_patient(patient_id) if s.key == schedule.key),
            None,
        )
        if existing is not None:
            schedule.schedule_id = existing.schedule_id
            self.schedules.update(schedule)
            logger.info("Replaced schedule %s for patient %s", schedule.schedule_id, patient_id)
        else:
            self.schedules.add(schedule)
            logger.info(
                "Created schedule %s for patient %s (%s/%s/%s at %s, next_run=%s)",
                schedule.schedule_id,
                patient_id,
                *schedule.key,
                schedule.scheduled_time,
                schedule.next_run,
            )
        return schedule

    def get(self, schedule_id: str) -> OutreachSchedule:
        schedule = self.schedules.get(schedule_id)
        if schedule is None:
            raise NotFoundFailure(f"schedule {schedule_id} not found")
        return schedule

    def list_for_patient(self, patient_id: str) -> List[OutreachSchedule]:
        return sorted(
            self.schedules.list_for_patient(patient_id),
            key=lambda s: (s.scheduled_time, s.channel.value, s.category.value),
        )

    def update(self, schedule_id: str, changes: Dict[str, Any], now: datetime) -> OutreachSchedule:
        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            raise ValidationFailure(
                f"fields not editable: {', '.join(sorted(unknown))}", field=sorted(unknown)[0]
            )
        current = self.get(schedule_id)
        patient = self._patient(current.patient_id)
        fields = self._validated(changes)
        try:
            updated = OutreachSchedule.model_validate(
                {
                    **current.model_dump(),
                    **fields,
                    "utc_offset_minutes": self._offset_for(patient),
                    "updated_at": now,
                }
            )
        except ValidationError as exc:
            raise ValidationFailure(str(exc)) from exc

        self._check_date_frequency(updated)
        updated.next_run = self._compute_next_run(updated, now)
        self.schedules.update(updated)
        logger.info("Updated schedule %s (next_run=%s)", schedule_id, updated.next_run)
        return updated

    def deactivate(self, schedule_id: str, now: datetime) -> OutreachSchedule:
        """
        Stop future firings. A firing already claimed keeps running; the next
        ``claim`` fails because the schedule is no longer active.
        """
        current = self.get(schedule_id)
        updated = current.model_copy(update={"is_active": False, "next_run": None, "updated_at": now})
        self.schedules.update(updated)
        logger.info("Deactivated schedule %s", schedule_id)
        return updated

    def delete(self, schedule_id: str) -> None:
        if not self.schedules.delete(schedule_id):
            raise NotFoundFailure(f"schedule {schedule_id} not found")
        logger.info("Deleted schedule %s", schedule_id)

    def resync_patient(self, patient_id: str, now: datetime) -> int:
        """Recompute ``next_run`` after the patient's UTC offset changed."""
        patient = self._patient(patient_id)
        offset = self._offset_for(patient)
        changed = 0
        for schedule in self.schedules.list_for_patient(patient_id):
            if not schedule.is_active or schedule.utc_offset_minutes == offset:
                continue
            schedule.utc_offset_minutes = offset
            schedule.updated_at = now
            if schedule.frequency == Frequency.ONCE and schedule.scheduled_date is not None:
                run_at = calculator.run_on_date(schedule.scheduled_time, offset, schedule.scheduled_date)
                schedule.next_run = run_at if run_at > now else now
            else:
                schedule.next_run = calculator.next_run(schedule.scheduled_time, offset, now)
            self.schedules.update(schedule)
            changed += 1
        if changed:
            logger.info("Resynced %d schedule(s) for patient %s to offset %d", changed, patient_id, offset)
        return changed

    # ═══════════════════════════════════════════════════════════════════════════
    # FIRING
    # ═══════════════════════════════════════════════════════════════════════════

    def due_schedules(self, now: datetime) -> List[OutreachSchedule]:
        """Active schedules whose ``next_run`` is at or before ``now``, oldest first."""
        due = [
            s
            for s in self.schedules.list_active()
            if s.is_active and s.next_run is not None and s.next_run <= now
        ]
        return sorted(due, key=lambda s: s.next_run)

    def on_fired(self, schedule: OutreachSchedule, now: datetime) -> Optional[OutreachSchedule]:
        """
        Claim a due schedule for this firing.

        ``daily`` schedules move to the following occurrence; ``once``
        schedules are deactivated. Returns the claimed schedule, or None when a
        concurrent caller already fired it (or it was deactivated).
        """
        if schedule.next_run is None:
            return None

        changes: Dict[str, Any] = {"last_fired_at": now, "updated_at": now}
        if schedule.frequency == Frequency.DAILY:
            changes["next_run"] = calculator.next_run(
                schedule.scheduled_time, schedule.utc_offset_minutes, now
            )
        else:
            changes["is_active"] = False
            changes["next_run"] = None

        claimed = self.schedules.claim(schedule.schedule_id, schedule.next_run, changes)
        if claimed is None:
            logger.info("Schedule %s already claimed by another trigger", schedule.schedule_id)
            return None
        logger.info(
            "Fired schedule %s (%s); next_run=%s active=%s",
            schedule.schedule_id,
            schedule.frequency.value,
            claimed.next_run,
            claimed.is_active,
        )
        return claimed

"""Per-insulin-type progress for the patient's current local day."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from apps.murphy.backend.src.models import InsulinType, MeasurementCategory
from apps.murphy.backend.src.scheduling.calculator import local_day_bounds
from apps.murphy.backend.src.stores.base import HealthRecordStore

NOT_CONFIGURED = "Not configured"


@dataclass(frozen=True)
class InsulinDayStatus:
    insulin_type: InsulinType
    configured: bool
    units_per_dose: Optional[float] = None
    doses_per_day: Optional[int] = None
    taken_today: int = 0

    @property
    def remaining(self) -> Optional[int]:
        if not self.configured:
            return None
        return max(self.doses_per_day - self.taken_today, 0)

    @property
    def text(self) -> str:
        if not self.configured:
            return NOT_CONFIGURED
        units = f"{self.units_per_dose:g}"
        progress = (
            "complete"
            if self.remaining == 0
            else f"{self.remaining} remaining"
        )
        return (
            f"{units} units, {self.doses_per_day} times a day "
            f"({self.taken_today} of {self.doses_per_day} completed today, {progress})"
        )


def insulin_day_status(
    store: HealthRecordStore,
    patient_id: str,
    insulin_type: InsulinType,
    now: datetime,
    utc_offset_minutes: int,
) -> InsulinDayStatus:
    start, end = local_day_bounds(now, utc_offset_minutes)
    taken = store.count_between(
        patient_id, MeasurementCategory.INSULIN, start, end, insulin_type=insulin_type
    )
    regimen = store.insulin_regimen(patient_id, insulin_type)
    if regimen is None:
        return InsulinDayStatus(insulin_type=insulin_type, configured=False, taken_today=taken)
    return InsulinDayStatus(
        insulin_type=insulin_type,
        configured=True,
        units_per_dose=regimen.units_per_dose,
        doses_per_day=regimen.times_per_day,
        taken_today=taken,
    )

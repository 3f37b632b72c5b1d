from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from .enums import InsulinType


class Patient(BaseModel):
    """Patient profile as exposed by the external patient-record store (read only)."""

    patient_id: str
    full_name: Optional[str] = None
    age: Optional[int] = None
    diabetes_type: Optional[str] = None
    diagnosis_year: Optional[int] = None
    phone_number: Optional[str] = None
    utc_offset_minutes: Optional[int] = Field(
        default=None, description="Fixed offset of the patient's wall clock from UTC"
    )
    coadmin_ids: List[str] = Field(default_factory=list)


class InsulinRegimen(BaseModel):
    """Configured insulin plan for one insulin type."""

    patient_id: str
    insulin_type: InsulinType
    units_per_dose: float
    times_per_day: int = Field(ge=1)

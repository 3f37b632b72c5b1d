"""
Schedule Management Endpoints
=============================

CRUD over a patient's outreach reminders. Enum and time values arrive as plain
strings and are validated by the scheduler, so bad input surfaces as a ``400``
naming the offending field.
"""

from __future__ import annotations

import asyncio
from typing import List, Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from apps.murphy.backend.api.dependencies import (
    CallerIdentity,
    get_services,
    require_patient_access,
)
from apps.murphy.backend.src.container import OutreachServices
from apps.murphy.backend.src.errors import NotFoundFailure
from apps.murphy.backend.src.models import OutreachSchedule

router = APIRouter()


class ScheduleCreate(BaseModel):
    channel: str
    category: str
    frequency: str
    scheduled_time: str
    scheduled_date: Optional[str] = None
    is_active: bool = True


class ScheduleUpdate(BaseModel):
    channel: Optional[str] = None
    category: Optional[str] = None
    frequency: Optional[str] = None
    scheduled_time: Optional[str] = None
    scheduled_date: Optional[str] = None
    is_active: Optional[bool] = None


def _owned(services: OutreachServices, patient_id: str, schedule_id: str) -> OutreachSchedule:
    schedule = services.scheduler.get(schedule_id)
    if schedule.patient_id != patient_id:
        raise NotFoundFailure(f"schedule {schedule_id} not found")
    return schedule


@router.get("/{patient_id}/schedules", response_model=List[OutreachSchedule])
async def list_schedules(
    patient_id: str,
    _: CallerIdentity = Depends(require_patient_access),
    services: OutreachServices = Depends(get_services),
):
    return await asyncio.to_thread(services.scheduler.list_for_patient, patient_id)


@router.post("/{patient_id}/schedules", response_model=OutreachSchedule, status_code=201)
async def create_schedule(
    patient_id: str,
    body: ScheduleCreate,
    caller: CallerIdentity = Depends(require_patient_access),
    services: OutreachServices = Depends(get_services),
):
    return await asyncio.to_thread(
        lambda: services.scheduler.create(
            patient_id,
            channel=body.channel,
            category=body.category,
            frequency=body.frequency,
            scheduled_time=body.scheduled_time,
            scheduled_date=body.scheduled_date,
            is_active=body.is_active,
            created_by=caller.caller_id,
            now=services.clock(),
        )
    )


@router.patch("/{patient_id}/schedules/{schedule_id}", response_model=OutreachSchedule)
async def update_schedule(
    patient_id: str,
    schedule_id: str,
    body: ScheduleUpdate,
    _: CallerIdentity = Depends(require_patient_access),
    services: OutreachServices = Depends(get_services),
):
    def _apply() -> OutreachSchedule:
        _owned(services, patient_id, schedule_id)
        changes = body.model_dump(exclude_unset=True)
        if changes == {"is_active": False}:
            return services.scheduler.deactivate(schedule_id, services.clock())
        return services.scheduler.update(schedule_id, changes, services.clock())

    return await asyncio.to_thread(_apply)


@router.delete("/{patient_id}/schedules/{schedule_id}", status_code=204)
async def delete_schedule(
    patient_id: str,
    schedule_id: str,
    _: CallerIdentity = Depends(require_patient_access),
    services: OutreachServices = Depends(get_services),
) -> Response:
    def _apply() -> None:
        _owned(services, patient_id, schedule_id)
        services.scheduler.delete(schedule_id)

    await asyncio.to_thread(_apply)
    return Response(status_code=204)

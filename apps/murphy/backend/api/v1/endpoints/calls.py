"""
Call Management Endpoints
=========================

On-demand outbound calls placed by a patient or one of their coadmins.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from apps.murphy.backend.api.dependencies import CallerIdentity, get_caller, get_services
from apps.murphy.backend.src.container import OutreachServices
from apps.murphy.backend.src.errors import AuthenticationFailure, NotFoundFailure
from apps.murphy.backend.src.models import Category
from utils.ml_logging import get_logger

logger = get_logger("api.calls")

router = APIRouter()


class OutboundCallRequest(BaseModel):
    patient_id: str = Field(..., min_length=1)
    to_number: Optional[str] = Field(default=None, description="Overrides the profile phone number")
    alert_type: Optional[Category] = None


class OutboundCallResponse(BaseModel):
    success: bool = True
    conversation_id: str
    status: str


@router.post("/outbound", response_model=OutboundCallResponse)
async def initiate_outbound_call(
    body: OutboundCallRequest,
    caller: CallerIdentity = Depends(get_caller),
    services: OutreachServices = Depends(get_services),
) -> OutboundCallResponse:
    if services.patients.get(body.patient_id) is None:
        raise NotFoundFailure(f"patient {body.patient_id} not found")
    if not caller.can_manage(body.patient_id, services.patients):
        raise AuthenticationFailure("caller may not call this patient", status_code=403)

    session = await services.voice.place_call(
        body.patient_id,
        to_number=body.to_number,
        alert_type=body.alert_type,
    )
    return OutboundCallResponse(conversation_id=session.conversation_id, status=session.status.value)

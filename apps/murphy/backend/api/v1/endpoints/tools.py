"""
Voice Agent Tool Endpoints
==========================

The voice provider's agent calls measurement tools over HTTP during a call.
The patient is resolved from the session bound to ``X-Conversation-Id``; any
patient identifier in the body is discarded by the tool registry.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header

from apps.murphy.backend.agents.tools import ToolRouter, measurement_tool_names
from apps.murphy.backend.api.dependencies import get_services, require_tool_secret
from apps.murphy.backend.src.container import OutreachServices
from apps.murphy.backend.src.errors import NotFoundFailure, ValidationFailure
from apps.murphy.backend.src.models import SessionStatus
from utils.ml_logging import get_logger

logger = get_logger("api.tools")

router = APIRouter(dependencies=[Depends(require_tool_secret)])


@router.get("")
async def list_agent_tools():
    return {"tools": measurement_tool_names()}


@router.post("/{tool_name}")
async def invoke_tool(
    tool_name: str,
    arguments: Optional[Dict[str, Any]] = Body(default=None),
    conversation_id: Optional[str] = Header(default=None, alias="X-Conversation-Id"),
    services: OutreachServices = Depends(get_services),
) -> Dict[str, Any]:
    if not conversation_id:
        raise ValidationFailure("X-Conversation-Id header is required", field="conversation_id")

    session = await asyncio.to_thread(services.sessions.get, conversation_id)
    if session is None or not session.patient_id:
        raise NotFoundFailure(f"conversation {conversation_id} not found")
    patient = await asyncio.to_thread(services.patients.get, session.patient_id)
    if patient is None:
        raise NotFoundFailure(f"patient {session.patient_id} not found")

    if session.status == SessionStatus.INITIATED:
        await asyncio.to_thread(
            services.sessions.transition,
            conversation_id,
            {SessionStatus.INITIATED},
            {"status": SessionStatus.IN_PROGRESS, "updated_at": services.clock()},
        )

    router_ = ToolRouter(
        patient.patient_id,
        services.records,
        services.policy,
        utc_offset_minutes=services.context_builder.offset_for(patient),
        conversation_id=conversation_id,
        clock=services.clock,
    )
    return await router_.invoke(tool_name, arguments or {})

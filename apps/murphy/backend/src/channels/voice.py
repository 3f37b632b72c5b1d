"""
Outbound Call Adapter
=====================

Resolves the destination number, seeds the voice agent with the patient's
context and asks the voice provider to dial. Every accepted call opens an
``initiated`` ConversationSession keyed by the provider's conversation id.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable, Optional

from opentelemetry import trace

from apps.murphy.backend.src.clock import utc_now
from apps.murphy.backend.src.context.builder import PatientContextBuilder
from apps.murphy.backend.src.errors import ProviderFailure
from apps.murphy.backend.src.models import (
    Category,
    Channel,
    ConversationSession,
    SessionStatus,
)
from apps.murphy.backend.src.services.elevenlabs.client import PROVIDER, ElevenLabsClient
from apps.murphy.backend.src.stores.base import SessionRepository
from utils.ml_logging import get_logger, mask_phone

logger = get_logger("channels.voice")
tracer = trace.get_tracer(__name__)


class OutboundCallAdapter:
    def __init__(
        self,
        client: ElevenLabsClient,
        context_builder: PatientContextBuilder,
        sessions: SessionRepository,
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.client = client
        self.context_builder = context_builder
        self.sessions = sessions
        self.clock = clock

    async def place_call(
        self,
        patient_id: str,
        *,
        to_number: Optional[str] = None,
        alert_type: Optional[Category] = None,
        schedule_id: Optional[str] = None,
        retry_count: int = 0,
        is_reminder: bool = False,
    ) -> ConversationSession:
        """
        Dial a patient and record the call as an ``initiated`` session.

        ``to_number`` overrides the profile's phone number. Raises
        ConfigurationFailure before any lookup when provider credentials are
        missing, NotFoundFailure for an unknown patient and ProviderFailure
        when no number can be resolved or the provider rejects the call.
        """
        self.client.ensure_configured()
        now = self.clock()

        with tracer.start_as_current_span(
            "voice.place_call",
            attributes={
                "patient.id": patient_id,
                "schedule.id": schedule_id or "",
                "call.retry_count": retry_count,
            },
        ) as span:
            context = await self.context_builder.build_context(patient_id, now)
            phone = (to_number or context.phone_number or "").strip()
            if not phone:
                raise ProviderFailure(
                    f"no phone number on file for patient {patient_id}", provider=PROVIDER
                )

            dynamic_variables = {
                **context.as_dynamic_variables(),
                "is_reminder": "true" if is_reminder else "false",
                "alert_type": (alert_type or Category.GENERAL).value,
            }
            result = await self.client.initiate_outbound_call(phone, dynamic_variables)
            span.set_attribute("conversation.id", result.conversation_id)

            session = ConversationSession(
                conversation_id=result.conversation_id,
                patient_id=patient_id,
                channel=Channel.CALL,
                status=SessionStatus.INITIATED,
                phone_number=phone,
                schedule_id=schedule_id,
                alert_type=alert_type,
                started_at=now,
                updated_at=now,
                retry_count=retry_count,
            )
            stored = await asyncio.to_thread(self.sessions.create_if_absent, session)
            logger.info(
                "Call %s placed to %s for patient %s (retry %d)",
                stored.conversation_id,
                mask_phone(phone),
                patient_id,
                retry_count,
            )
            return stored

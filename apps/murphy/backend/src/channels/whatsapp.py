"""
WhatsApp Channel Adapter
========================

Inbound: a verified ``whatsapp.message.received`` event is bound to the
sender's active WhatsApp session (or a new one), then answered by the chat
agent with the patient's measurement tools.

Outbound: a fired ``message`` schedule sends a category greeting and opens an
``in_progress`` session so the patient's reply lands in the same thread.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from opentelemetry import trace

from apps.murphy.backend.agents.chat import ChatAgent
from apps.murphy.backend.agents.tools.anomaly import AnomalyPolicy
from apps.murphy.backend.agents.tools.router import ToolRouter
from apps.murphy.backend.src.clock import utc_now
from apps.murphy.backend.src.context.builder import PatientContextBuilder
from apps.murphy.backend.src.errors import NotFoundFailure, ProviderFailure
from apps.murphy.backend.src.models import (
    Category,
    Channel,
    ConversationSession,
    Patient,
    SessionStatus,
)
from apps.murphy.backend.src.services.kapso.client import PROVIDER, KapsoClient
from apps.murphy.backend.src.stores.base import (
    HealthRecordStore,
    IdempotencyGuard,
    PatientDirectory,
    SessionRepository,
)
from apps.murphy.backend.src.webhooks.events import WhatsAppMessageReceived
from utils.ml_logging import get_logger, mask_phone

logger = get_logger("channels.whatsapp")
tracer = trace.get_tracer(__name__)

REGISTRATION_NOTICE = (
    "Hi! I'm Murphy. I couldn't find a patient registered with this number. "
    "Please ask your care team to register you so I can help you log your measurements."
)

ALERT_MESSAGES: Dict[Category, str] = {
    Category.GLUCOMETRY: (
        "Hi {name}! It's time to measure your glucose. "
        "Reply with your reading in mg/dL and I'll log it for you."
    ),
    Category.INSULIN: (
        "Hi {name}! It's time for your insulin. "
        "Tell me how many units you applied and whether it was rapid or basal."
    ),
    Category.WELLNESS: (
        "Hi {name}! How are you feeling today? "
        "Did you sleep well? Tell me how many hours you slept."
    ),
    Category.GENERAL: "Hi {name}! This is Murphy checking in. How is everything going today?",
}


def alert_text(category: Category, patient: Patient) -> str:
    first_name = (patient.full_name or "there").split(" ")[0]
    return ALERT_MESSAGES[category].format(name=first_name)


class WhatsAppAdapter:
    def __init__(
        self,
        client: KapsoClient,
        chat_agent: ChatAgent,
        patients: PatientDirectory,
        records: HealthRecordStore,
        sessions: SessionRepository,
        context_builder: PatientContextBuilder,
        policy: AnomalyPolicy,
        dedupe: IdempotencyGuard,
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.client = client
        self.chat_agent = chat_agent
        self.patients = patients
        self.records = records
        self.sessions = sessions
        self.context_builder = context_builder
        self.policy = policy
        self.dedupe = dedupe
        self.clock = clock

    # ═══════════════════════════════════════════════════════════════════════════
    # SESSION LINKAGE
    # ═══════════════════════════════════════════════════════════════════════════

    def _bind_session(
        self, event: WhatsAppMessageReceived, patient: Patient, phone: str, now: datetime
    ) -> ConversationSession:
        session = self.sessions.find_active_by_phone(phone, Channel.MESSAGE)
        if session is None:
            session = self.sessions.create_if_absent(
                ConversationSession(
                    conversation_id=f"wa-{event.conversation.id}",
                    patient_id=patient.patient_id,
                    channel=Channel.MESSAGE,
                    status=SessionStatus.IN_PROGRESS,
                    phone_number=phone,
                    started_at=now,
                    updated_at=now,
                )
            )
        if session.status == SessionStatus.INITIATED:
            moved = self.sessions.transition(
                session.conversation_id,
                {SessionStatus.INITIATED},
                {"status": SessionStatus.IN_PROGRESS, "updated_at": now},
            )
            session = moved or session
        return session

    # ═══════════════════════════════════════════════════════════════════════════
    # INBOUND
    # ═══════════════════════════════════════════════════════════════════════════

    async def handle_message(self, event: WhatsAppMessageReceived) -> Dict[str, Any]:
        """
        Answer one inbound message. Outbound echoes, empty messages and
        redeliveries of an already handled message id are ignored.
        """
        message = event.message
        if not message.is_inbound:
            return {"status": "ignored", "reason": "not_inbound"}
        text = (message.body or "").strip()
        if not text:
            return {"status": "ignored", "reason": "no_text"}
        dedupe_key = f"wa-message:{message.id}"
        first = await asyncio.to_thread(self.dedupe.first_seen, dedupe_key)
        if not first:
            logger.info("Duplicate WhatsApp message %s ignored", message.id)
            return {"status": "ignored", "reason": "duplicate"}

        try:
            return await self._answer(event, text)
        except Exception:
            # Unanswered messages stay eligible for provider redelivery.
            await asyncio.to_thread(self.dedupe.release, dedupe_key)
            raise

    async def _answer(self, event: WhatsAppMessageReceived, text: str) -> Dict[str, Any]:
        message = event.message
        phone = message.from_ or event.conversation.phone_number
        now = self.clock()

        with tracer.start_as_current_span(
            "whatsapp.handle_message",
            attributes={"messaging.message.id": message.id, "messaging.system": "whatsapp"},
        ) as span:
            patient = await asyncio.to_thread(self.patients.find_by_phone, phone)
            if patient is None:
                logger.info("WhatsApp message from unregistered number %s", mask_phone(phone))
                await self.client.send_text(phone, REGISTRATION_NOTICE)
                return {"status": "unregistered"}

            span.set_attribute("patient.id", patient.patient_id)
            session = await asyncio.to_thread(self._bind_session, event, patient, phone, now)
            span.set_attribute("conversation.id", session.conversation_id)

            context = await self.context_builder.build_context(patient.patient_id, now)
            router = ToolRouter(
                patient.patient_id,
                self.records,
                self.policy,
                utc_offset_minutes=self.context_builder.offset_for(patient),
                conversation_id=session.conversation_id,
                clock=self.clock,
            )
            reply = await self.chat_agent.respond(
                session.conversation_id, text, router=router, context=context
            )
            await self.client.send_text(phone, reply)
            return {"status": "replied", "conversation_id": session.conversation_id}

    # ═══════════════════════════════════════════════════════════════════════════
    # OUTBOUND ALERTS
    # ═══════════════════════════════════════════════════════════════════════════

    async def send_alert(
        self,
        patient_id: str,
        category: Category,
        *,
        schedule_id: Optional[str] = None,
    ) -> ConversationSession:
        """Send the category greeting and open the reply session."""
        patient = await asyncio.to_thread(self.patients.get, patient_id)
        if patient is None:
            raise NotFoundFailure(f"patient {patient_id} not found")
        if not patient.phone_number:
            raise ProviderFailure(f"no phone number on file for patient {patient_id}", provider=PROVIDER)

        now = self.clock()
        text = alert_text(category, patient)
        with tracer.start_as_current_span(
            "whatsapp.send_alert",
            attributes={"patient.id": patient_id, "schedule.id": schedule_id or "", "alert.type": category.value},
        ):
            await self.client.send_text(patient.phone_number, text)

            existing = await asyncio.to_thread(
                self.sessions.find_active_by_phone, patient.phone_number, Channel.MESSAGE
            )
            if existing is not None:
                # A newer alert supersedes the open thread.
                await asyncio.to_thread(
                    self.sessions.transition,
                    existing.conversation_id,
                    {SessionStatus.INITIATED, SessionStatus.IN_PROGRESS},
                    {
                        "status": SessionStatus.COMPLETED,
                        "outcome": "superseded",
                        "completed_at": now,
                        "updated_at": now,
                    },
                )
                self.chat_agent.memory.forget(existing.conversation_id)

            session = ConversationSession(
                conversation_id=f"wa-alert-{uuid.uuid4().hex}",
                patient_id=patient_id,
                channel=Channel.MESSAGE,
                status=SessionStatus.IN_PROGRESS,
                phone_number=patient.phone_number,
                schedule_id=schedule_id,
                alert_type=category,
                started_at=now,
                updated_at=now,
            )
            stored = await asyncio.to_thread(self.sessions.create_if_absent, session)
            self.chat_agent.memory.append(stored.conversation_id, {"role": "assistant", "content": text})
            logger.info(
                "Sent %s alert to %s (session %s)",
                category.value,
                mask_phone(patient.phone_number),
                stored.conversation_id,
            )
            return stored

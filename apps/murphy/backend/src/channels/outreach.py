"""
Outreach pipeline driver.

``OutreachService.tick`` is invoked by an external periodic trigger. It fires
due schedules on their channel, fails calls that never got a webhook, then
re-dials the retries that have come due. Each step claims its work item
atomically first, so overlapping ticks never fire the same thing twice.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from apps.murphy.backend.src.channels.outcomes import OutcomeHandler
from apps.murphy.backend.src.channels.voice import OutboundCallAdapter
from apps.murphy.backend.src.channels.whatsapp import WhatsAppAdapter
from apps.murphy.backend.src.clock import utc_now
from apps.murphy.backend.src.errors import OutreachError
from apps.murphy.backend.src.models import Channel, ConversationSession, OutreachSchedule
from apps.murphy.backend.src.scheduling.scheduler import OutreachScheduler
from apps.murphy.backend.src.stores.base import SessionRepository
from utils.ml_logging import get_logger

logger = get_logger("channels.outreach")
tracer = trace.get_tracer(__name__)


class OutreachService:
    def __init__(
        self,
        scheduler: OutreachScheduler,
        outcomes: OutcomeHandler,
        voice: OutboundCallAdapter,
        whatsapp: WhatsAppAdapter,
        sessions: SessionRepository,
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.scheduler = scheduler
        self.outcomes = outcomes
        self.voice = voice
        self.whatsapp = whatsapp
        self.sessions = sessions
        self.clock = clock

    async def dispatch(self, schedule: OutreachSchedule, now: datetime) -> Optional[str]:
        """
        Fire one due schedule. Returns the conversation id of the call or
        message session, or None when another trigger already claimed it or
        the provider rejected the outreach.
        """
        claimed = await asyncio.to_thread(self.scheduler.on_fired, schedule, now)
        if claimed is None:
            return None

        with tracer.start_as_current_span(
            "outreach.dispatch",
            attributes={
                "schedule.id": schedule.schedule_id,
                "patient.id": schedule.patient_id,
                "outreach.channel": schedule.channel.value,
            },
        ) as span:
            try:
                if schedule.channel == Channel.CALL:
                    session = await self.voice.place_call(
                        schedule.patient_id,
                        alert_type=schedule.category,
                        schedule_id=schedule.schedule_id,
                        is_reminder=True,
                    )
                else:
                    session = await self.whatsapp.send_alert(
                        schedule.patient_id,
                        schedule.category,
                        schedule_id=schedule.schedule_id,
                    )
            except OutreachError as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, exc.message))
                logger.error(
                    "Outreach for schedule %s failed: %s", schedule.schedule_id, exc.message
                )
                if schedule.channel == Channel.CALL:
                    await asyncio.to_thread(
                        self.outcomes.record_dispatch_failure,
                        schedule.patient_id,
                        now,
                        reason=exc.message,
                        schedule_id=schedule.schedule_id,
                        alert_type=schedule.category,
                    )
                return None
            return session.conversation_id

    async def _redial(self, session: ConversationSession, now: datetime) -> Optional[str]:
        marked = await asyncio.to_thread(self.sessions.mark_retry_dispatched, session.conversation_id)
        if not marked:
            return None
        retry_count = session.retry_count + 1
        try:
            placed = await self.voice.place_call(
                session.patient_id,
                to_number=session.phone_number,
                alert_type=session.alert_type,
                schedule_id=session.schedule_id,
                retry_count=retry_count,
                is_reminder=True,
            )
        except OutreachError as exc:
            logger.error(
                "Retry %d for conversation %s failed: %s",
                retry_count,
                session.conversation_id,
                exc.message,
            )
            await asyncio.to_thread(
                self.outcomes.record_dispatch_failure,
                session.patient_id,
                now,
                reason=exc.message,
                phone_number=session.phone_number,
                schedule_id=session.schedule_id,
                alert_type=session.alert_type,
                retry_count=retry_count,
            )
            return None
        return placed.conversation_id

    async def tick(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or self.clock()
        with tracer.start_as_current_span("outreach.tick") as span:
            due = await asyncio.to_thread(self.scheduler.due_schedules, now)
            fired: List[str] = []
            for schedule in due:
                conversation_id = await self.dispatch(schedule, now)
                if conversation_id:
                    fired.append(conversation_id)

            stale = await asyncio.to_thread(self.outcomes.sweep_stale, now)

            retries = await asyncio.to_thread(self.sessions.list_due_retries, now)
            redialed: List[str] = []
            for session in retries:
                if session.patient_id is None:
                    continue
                conversation_id = await self._redial(session, now)
                if conversation_id:
                    redialed.append(conversation_id)

            summary = {
                "due": len(due),
                "fired": fired,
                "failed_no_webhook": stale,
                "retried": redialed,
            }
            span.set_attribute("outreach.due", len(due))
            span.set_attribute("outreach.fired", len(fired))
            span.set_attribute("outreach.retried", len(redialed))
            if due or stale or redialed:
                logger.info(
                    "Outreach tick: %d due, %d fired, %d stale, %d retried",
                    len(due),
                    len(fired),
                    len(stale),
                    len(redialed),
                )
            return summary

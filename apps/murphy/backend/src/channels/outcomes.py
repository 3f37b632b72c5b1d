"""
Call/Conversation Outcome Handler
=================================

Closes ConversationSessions from verified voice-provider webhooks, fails
calls whose webhook never arrived, and schedules automatic re-dials.

Every transition goes through ``SessionRepository.transition`` with an
``allowed_from`` guard, so a redelivered webhook for a session that is already
terminal is a no-op.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from apps.murphy.backend.src.models import (
    Category,
    Channel,
    ConversationSession,
    SessionStatus,
)
from apps.murphy.backend.src.stores.base import SessionRepository
from apps.murphy.backend.src.webhooks.events import (
    CallInitiationFailure,
    PostCallTranscription,
    VoiceEvent,
)
from utils.ml_logging import get_logger

logger = get_logger("channels.outcomes")

OPEN_STATUSES = frozenset({SessionStatus.INITIATED, SessionStatus.IN_PROGRESS})

OUTCOME_COMPLETED = "completed"
OUTCOME_TOO_SHORT = "too_short"
OUTCOME_BUSY = "busy"
OUTCOME_NO_ANSWER = "no_answer"
OUTCOME_NO_WEBHOOK = "no_webhook"
OUTCOME_DISPATCH_FAILED = "dispatch_failed"


class OutcomeHandler:
    def __init__(
        self,
        sessions: SessionRepository,
        *,
        min_duration_seconds: int = 20,
        max_retries: int = 3,
        retry_delay_seconds: int = 300,
        fallback_check_seconds: int = 360,
    ):
        self.sessions = sessions
        self.min_duration_seconds = min_duration_seconds
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self.fallback_check_seconds = fallback_check_seconds

    def _retry_fields(self, retry_count: int, outcome: str, now: datetime) -> Dict[str, Any]:
        if outcome == OUTCOME_COMPLETED or retry_count >= self.max_retries:
            return {}
        return {
            "retry_due_at": now + timedelta(seconds=self.retry_delay_seconds),
            "retry_dispatched": False,
        }

    def _close(
        self,
        conversation_id: str,
        status: SessionStatus,
        outcome: str,
        now: datetime,
        **fields: Any,
    ) -> Dict[str, Any]:
        current = self.sessions.get(conversation_id)
        if current is None:
            logger.warning("Outcome for unknown conversation %s ignored", conversation_id)
            return {"status": "ignored", "reason": "unknown_conversation"}
        if current.is_terminal:
            return {"status": "ignored", "reason": "duplicate", "outcome": current.outcome}

        changes: Dict[str, Any] = {
            "status": status,
            "outcome": outcome,
            "completed_at": now,
            "updated_at": now,
            **fields,
        }
        if current.channel == Channel.CALL:
            changes.update(self._retry_fields(current.retry_count, outcome, now))

        updated = self.sessions.transition(conversation_id, OPEN_STATUSES, changes)
        if updated is None:
            # Lost the race against a concurrent delivery of the same webhook.
            return {"status": "ignored", "reason": "duplicate"}

        logger.info(
            "Conversation %s -> %s (%s)%s",
            conversation_id,
            status.value,
            outcome,
            f", retry due {updated.retry_due_at.isoformat()}" if updated.retry_due_at else "",
        )
        return {
            "status": "processed",
            "conversation_id": conversation_id,
            "outcome": outcome,
            "retry_scheduled": updated.retry_due_at is not None,
        }

    # ═══════════════════════════════════════════════════════════════════════════
    # WEBHOOK OUTCOMES
    # ═══════════════════════════════════════════════════════════════════════════

    def handle_voice_event(self, event: VoiceEvent, now: datetime) -> Dict[str, Any]:
        if isinstance(event, PostCallTranscription):
            duration = event.data.metadata.call_duration_secs
            short = duration is not None and duration < self.min_duration_seconds
            return self._close(
                event.data.conversation_id,
                SessionStatus.COMPLETED,
                OUTCOME_TOO_SHORT if short else OUTCOME_COMPLETED,
                now,
                duration_seconds=duration,
            )
        if isinstance(event, CallInitiationFailure):
            reason = (event.data.failure_reason or "unknown").lower()
            return self._close(
                event.data.conversation_id,
                SessionStatus.FAILED,
                OUTCOME_BUSY if reason == "busy" else OUTCOME_NO_ANSWER,
                now,
                failure_reason=reason,
            )
        logger.info("Unhandled voice webhook type %s", getattr(event, "type", "unknown"))
        return {"status": "unhandled", "type": getattr(event, "type", "unknown")}

    # ═══════════════════════════════════════════════════════════════════════════
    # FALLBACKS
    # ═══════════════════════════════════════════════════════════════════════════

    def sweep_stale(self, now: datetime) -> List[str]:
        """Fail voice sessions that never received a terminal webhook."""
        cutoff = now - timedelta(seconds=self.fallback_check_seconds)
        failed: List[str] = []
        for session in self.sessions.list_stale(OPEN_STATUSES, cutoff, Channel.CALL):
            result = self._close(
                session.conversation_id,
                SessionStatus.FAILED,
                OUTCOME_NO_WEBHOOK,
                now,
                failure_reason="no webhook received",
            )
            if result["status"] == "processed":
                failed.append(session.conversation_id)
        if failed:
            logger.warning("Failed %d call(s) with no webhook: %s", len(failed), failed)
        return failed

    def record_dispatch_failure(
        self,
        patient_id: str,
        now: datetime,
        *,
        reason: str,
        phone_number: Optional[str] = None,
        schedule_id: Optional[str] = None,
        alert_type: Optional[Category] = None,
        retry_count: int = 0,
    ) -> ConversationSession:
        """Record a call the provider never accepted so the retry sweep can pick it up."""
        session = ConversationSession(
            conversation_id=f"dispatch-{uuid.uuid4().hex}",
            patient_id=patient_id,
            channel=Channel.CALL,
            status=SessionStatus.FAILED,
            phone_number=phone_number,
            schedule_id=schedule_id,
            alert_type=alert_type,
            started_at=now,
            updated_at=now,
            completed_at=now,
            failure_reason=reason[:500],
            outcome=OUTCOME_DISPATCH_FAILED,
            retry_count=retry_count,
            **self._retry_fields(retry_count, OUTCOME_DISPATCH_FAILED, now),
        )
        return self.sessions.create_if_absent(session)

"""
Tests for OutcomeHandler
========================

Webhook-driven session closing, the no-webhook fallback and retry scheduling.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from apps.murphy.backend.src.channels.outcomes import OutcomeHandler
from apps.murphy.backend.src.models import (
    Category,
    Channel,
    ConversationSession,
    SessionStatus,
)
from apps.murphy.backend.src.webhooks.events import parse_voice_event


def transcription(conversation_id: str, duration: float | None = 95) -> dict:
    return {
        "type": "post_call_transcription",
        "event_timestamp": 1741618800,
        "data": {
            "conversation_id": conversation_id,
            "agent_id": "agent_1",
            "status": "done",
            "metadata": {"call_duration_secs": duration},
            "transcript": [{"role": "agent", "message": "Hola Ana"}],
        },
    }


def initiation_failure(conversation_id: str, reason: str) -> dict:
    return {
        "type": "call_initiation_failure",
        "data": {"conversation_id": conversation_id, "failure_reason": reason},
    }


# ═══════════════════════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def handler(sessions):
    return OutcomeHandler(sessions, min_duration_seconds=20, max_retries=3, retry_delay_seconds=300)


@pytest.fixture
def open_call(sessions, now):
    return sessions.create_if_absent(
        ConversationSession(
            conversation_id="conv_1",
            patient_id="pat-001",
            channel=Channel.CALL,
            status=SessionStatus.INITIATED,
            phone_number="+573001234567",
            alert_type=Category.GLUCOMETRY,
            started_at=now,
        )
    )


# ═══════════════════════════════════════════════════════════════════════════════
# VOICE WEBHOOK OUTCOMES
# ═══════════════════════════════════════════════════════════════════════════════


class TestPostCallTranscription:
    def test_completed_call(self, handler, sessions, open_call, now):
        later = now + timedelta(minutes=3)
        result = handler.handle_voice_event(parse_voice_event(transcription("conv_1")), later)

        assert result == {
            "status": "processed",
            "conversation_id": "conv_1",
            "outcome": "completed",
            "retry_scheduled": False,
        }
        stored = sessions.get("conv_1")
        assert stored.status == SessionStatus.COMPLETED
        assert stored.duration_seconds == 95
        assert stored.completed_at == later
        assert stored.retry_due_at is None

    def test_redelivered_webhook_recorded_once(self, handler, sessions, open_call, now):
        event = parse_voice_event(transcription("conv_1"))
        first = handler.handle_voice_event(event, now)
        second = handler.handle_voice_event(event, now + timedelta(seconds=30))

        assert first["status"] == "processed"
        assert second == {"status": "ignored", "reason": "duplicate", "outcome": "completed"}
        assert sessions.get("conv_1").completed_at == now

    def test_too_short_schedules_retry(self, handler, sessions, open_call, now):
        result = handler.handle_voice_event(parse_voice_event(transcription("conv_1", 8)), now)

        assert result["outcome"] == "too_short"
        assert result["retry_scheduled"] is True
        stored = sessions.get("conv_1")
        assert stored.status == SessionStatus.COMPLETED
        assert stored.retry_due_at == now + timedelta(seconds=300)
        assert stored.retry_dispatched is False

    def test_min_duration_is_inclusive_lower_bound(self, handler, open_call, now):
        result = handler.handle_voice_event(parse_voice_event(transcription("conv_1", 20)), now)
        assert result["outcome"] == "completed"

    def test_missing_duration_counts_as_completed(self, handler, open_call, now):
        result = handler.handle_voice_event(parse_voice_event(transcription("conv_1", None)), now)
        assert result["outcome"] == "completed"

    def test_unknown_conversation_ignored(self, handler, now):
        result = handler.handle_voice_event(parse_voice_event(transcription("conv_x")), now)
        assert result == {"status": "ignored", "reason": "unknown_conversation"}


class TestCallInitiationFailure:
    @pytest.mark.parametrize("reason,outcome", [("busy", "busy"), ("BUSY", "busy"), ("no-answer", "no_answer"), ("unknown", "no_answer")])
    def test_failure_reason_maps_to_outcome(self, handler, sessions, open_call, now, reason, outcome):
        result = handler.handle_voice_event(parse_voice_event(initiation_failure("conv_1", reason)), now)

        assert result["outcome"] == outcome
        assert result["retry_scheduled"] is True
        stored = sessions.get("conv_1")
        assert stored.status == SessionStatus.FAILED
        assert stored.failure_reason == reason.lower()

    def test_no_retry_after_max_attempts(self, handler, sessions, now):
        sessions.create_if_absent(
            ConversationSession(
                conversation_id="conv_retry",
                patient_id="pat-001",
                channel=Channel.CALL,
                started_at=now,
                retry_count=3,
            )
        )
        result = handler.handle_voice_event(
            parse_voice_event(initiation_failure("conv_retry", "busy")), now
        )
        assert result["retry_scheduled"] is False
        assert sessions.get("conv_retry").retry_due_at is None


class TestUnhandledEvents:
    def test_other_types_are_acknowledged(self, handler, open_call, now):
        result = handler.handle_voice_event(parse_voice_event({"type": "post_call_audio"}), now)
        assert result == {"status": "unhandled", "type": "post_call_audio"}

    def test_message_sessions_never_retry(self, handler, sessions, now):
        sessions.create_if_absent(
            ConversationSession(
                conversation_id="wa-1",
                patient_id="pat-001",
                channel=Channel.MESSAGE,
                status=SessionStatus.IN_PROGRESS,
                started_at=now,
            )
        )
        result = handler.handle_voice_event(parse_voice_event(transcription("wa-1", 3)), now)
        assert result["retry_scheduled"] is False


# ═══════════════════════════════════════════════════════════════════════════════
# FALLBACKS
# ═══════════════════════════════════════════════════════════════════════════════


class TestSweepStale:
    def test_fails_call_without_webhook(self, handler, sessions, open_call, now):
        assert handler.sweep_stale(now + timedelta(seconds=359)) == []

        later = now + timedelta(seconds=360)
        assert handler.sweep_stale(later) == ["conv_1"]
        stored = sessions.get("conv_1")
        assert stored.status == SessionStatus.FAILED
        assert stored.outcome == "no_webhook"
        assert stored.retry_due_at == later + timedelta(seconds=300)

    def test_sweep_is_idempotent(self, handler, open_call, now):
        later = now + timedelta(minutes=10)
        assert handler.sweep_stale(later) == ["conv_1"]
        assert handler.sweep_stale(later) == []

    def test_late_webhook_after_sweep_is_ignored(self, handler, sessions, open_call, now):
        handler.sweep_stale(now + timedelta(minutes=10))
        result = handler.handle_voice_event(
            parse_voice_event(transcription("conv_1")), now + timedelta(minutes=11)
        )
        assert result["reason"] == "duplicate"
        assert sessions.get("conv_1").outcome == "no_webhook"


class TestDispatchFailure:
    def test_records_failed_session_with_retry(self, handler, sessions, now):
        session = handler.record_dispatch_failure(
            "pat-001",
            now,
            reason="provider returned 503",
            phone_number="+573001234567",
            schedule_id="sched-1",
            alert_type=Category.INSULIN,
        )
        stored = sessions.get(session.conversation_id)
        assert stored.conversation_id.startswith("dispatch-")
        assert stored.status == SessionStatus.FAILED
        assert stored.outcome == "dispatch_failed"
        assert stored.retry_due_at == now + timedelta(seconds=300)
        assert [s.conversation_id for s in sessions.list_due_retries(now + timedelta(minutes=5))] == [
            session.conversation_id
        ]

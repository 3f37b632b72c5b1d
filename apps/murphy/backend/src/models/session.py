from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from .enums import Category, Channel, SessionStatus, TERMINAL_STATUSES


class ConversationSession(BaseModel):
    """
    One call or WhatsApp conversation, keyed by the provider-issued id.

    Lifecycle: ``initiated -> in_progress -> {completed | failed}``. Terminal
    sessions never transition again; redelivered webhooks become no-ops.
    """

    conversation_id: str
    patient_id: Optional[str] = None
    channel: Channel
    status: SessionStatus = SessionStatus.INITIATED
    phone_number: Optional[str] = None
    schedule_id: Optional[str] = None
    alert_type: Optional[Category] = None
    started_at: datetime
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    failure_reason: Optional[str] = None
    outcome: Optional[str] = None
    retry_count: int = 0
    retry_due_at: Optional[datetime] = None
    retry_dispatched: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

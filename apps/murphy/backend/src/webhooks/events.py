"""
Provider webhook payloads.

Each provider event is parsed into one tagged variant; anything else becomes an
explicit unknown variant instead of being probed field by field.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from apps.murphy.backend.src.errors import ValidationFailure

WHATSAPP_MESSAGE_RECEIVED = "whatsapp.message.received"


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="allow")


# ═══════════════════════════════════════════════════════════════════════════════
# VOICE PROVIDER (ElevenLabs)
# ═══════════════════════════════════════════════════════════════════════════════


class CallMetadata(_Lenient):
    call_duration_secs: Optional[float] = None
    start_time_unix_secs: Optional[int] = None


class TranscriptionData(_Lenient):
    conversation_id: str
    agent_id: Optional[str] = None
    status: Optional[str] = None
    metadata: CallMetadata = Field(default_factory=CallMetadata)


class InitiationFailureData(_Lenient):
    conversation_id: str
    agent_id: Optional[str] = None
    failure_reason: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class PostCallTranscription(_Lenient):
    type: Literal["post_call_transcription"]
    event_timestamp: Optional[int] = None
    data: TranscriptionData


class CallInitiationFailure(_Lenient):
    type: Literal["call_initiation_failure"]
    event_timestamp: Optional[int] = None
    data: InitiationFailureData


class UnknownVoiceEvent(_Lenient):
    type: str = "unknown"


VoiceEvent = Union[PostCallTranscription, CallInitiationFailure, UnknownVoiceEvent]

_VOICE_VARIANTS = {
    "post_call_transcription": PostCallTranscription,
    "call_initiation_failure": CallInitiationFailure,
}


def parse_voice_event(payload: Any) -> VoiceEvent:
    """Raises ValidationFailure when a known event type has the wrong shape."""
    if not isinstance(payload, dict):
        raise ValidationFailure("webhook body must be a JSON object")
    variant = _VOICE_VARIANTS.get(str(payload.get("type")))
    if variant is None:
        return UnknownVoiceEvent(type=str(payload.get("type") or "unknown"))
    try:
        return variant.model_validate(payload)
    except ValidationError as exc:
        raise ValidationFailure(f"invalid {payload.get('type')} payload: {exc.error_count()} error(s)") from exc


# ═══════════════════════════════════════════════════════════════════════════════
# WHATSAPP PROVIDER (Kapso)
# ═══════════════════════════════════════════════════════════════════════════════


class MessageText(BaseModel):
    body: str


class MessageKapso(_Lenient):
    direction: str
    status: str
    processing_status: str
    origin: str
    has_media: bool
    content: Optional[str] = None


class WhatsAppMessage(_Lenient):
    id: str
    timestamp: str
    type: str
    text: Optional[MessageText] = None
    from_: str = Field(alias="from")
    kapso: MessageKapso

    @property
    def body(self) -> Optional[str]:
        if self.text and self.text.body:
            return self.text.body
        return self.kapso.content

    @property
    def is_inbound(self) -> bool:
        return self.kapso.direction == "inbound"


class ConversationKapso(_Lenient):
    messages_count: int


class WhatsAppConversation(_Lenient):
    id: str
    phone_number: str
    status: str
    last_active_at: str
    created_at: str
    updated_at: str
    metadata: Any = None
    phone_number_id: str
    kapso: ConversationKapso


class WhatsAppMessageReceived(_Lenient):
    message: WhatsAppMessage
    conversation: WhatsAppConversation
    is_new_conversation: bool
    phone_number_id: str
    test: Optional[bool] = None
    test_timestamp: Optional[str] = None


def parse_whatsapp_event(event_type: Optional[str], payload: Any) -> List[WhatsAppMessageReceived]:
    """
    Validate a WhatsApp webhook body for ``event_type``.

    Batched deliveries (``{"batch": true, "data": [...]}``) yield one item
    per entry. Raises ValidationFailure for unknown event types or schema
    mismatches.
    """
    if event_type != WHATSAPP_MESSAGE_RECEIVED:
        raise ValidationFailure(f"event type '{event_type or 'unknown'}' not handled", field="event_type")
    if not isinstance(payload, dict):
        raise ValidationFailure("webhook body must be a JSON object")

    items = payload.get("data") if payload.get("batch") else [payload]
    if not isinstance(items, list) or not items:
        raise ValidationFailure("batched webhook has no data entries")
    try:
        return [WhatsAppMessageReceived.model_validate(item) for item in items]
    except ValidationError as exc:
        raise ValidationFailure(f"invalid payload structure: {exc.error_count()} error(s)") from exc

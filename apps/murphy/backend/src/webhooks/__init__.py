from .events import (
    WHATSAPP_MESSAGE_RECEIVED,
    CallInitiationFailure,
    PostCallTranscription,
    UnknownVoiceEvent,
    VoiceEvent,
    WhatsAppMessageReceived,
    parse_voice_event,
    parse_whatsapp_event,
)
from .signature import VerificationResult, compute_signature, verify, verify_plain

__all__ = [
    "WHATSAPP_MESSAGE_RECEIVED",
    "CallInitiationFailure",
    "PostCallTranscription",
    "UnknownVoiceEvent",
    "VerificationResult",
    "VoiceEvent",
    "WhatsAppMessageReceived",
    "compute_signature",
    "parse_voice_event",
    "parse_whatsapp_event",
    "verify",
    "verify_plain",
]

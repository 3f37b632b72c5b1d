"""
Channel adapters and outcome handling for patient outreach.

Usage:
    from apps.murphy.backend.src.channels import OutreachService, OutcomeHandler
"""

from .outcomes import OutcomeHandler
from .outreach import OutreachService
from .voice import OutboundCallAdapter
from .whatsapp import REGISTRATION_NOTICE, WhatsAppAdapter, alert_text

__all__ = [
    "OutboundCallAdapter",
    "OutcomeHandler",
    "OutreachService",
    "REGISTRATION_NOTICE",
    "WhatsAppAdapter",
    "alert_text",
]

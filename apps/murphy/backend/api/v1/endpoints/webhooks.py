"""
Provider Webhook Endpoints
==========================

Inbound webhooks from the voice provider (call outcomes) and the WhatsApp
provider (patient messages). The signature is checked against the raw body
before anything is parsed. Events the service does not act on are answered
with ``200`` so providers do not redeliver them.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from opentelemetry import trace

from apps.murphy.backend.api.dependencies import get_services
from apps.murphy.backend.src.container import OutreachServices
from apps.murphy.backend.src.errors import OutreachError, ValidationFailure
from apps.murphy.backend.src.webhooks import (
    VerificationResult,
    parse_voice_event,
    parse_whatsapp_event,
    verify,
    verify_plain,
)
from utils.ml_logging import get_logger

logger = get_logger("api.webhooks")
tracer = trace.get_tracer(__name__)

router = APIRouter()


def _rejected(verdict: VerificationResult, provider: str) -> JSONResponse:
    logger.warning("Rejected %s webhook: %s", provider, verdict.failure_reason)
    return JSONResponse(
        status_code=verdict.status_code,
        content={"status": "rejected", "reason": verdict.failure_reason},
    )


def _json_body(raw: bytes) -> Any:
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationFailure("webhook body is not valid JSON") from exc


@router.post("/elevenlabs")
async def elevenlabs_webhook(
    request: Request,
    signature: Optional[str] = Header(default=None, alias="ElevenLabs-Signature"),
    services: OutreachServices = Depends(get_services),
):
    """Post-call transcription and call initiation failure events."""
    raw = await request.body()
    verdict = verify(
        raw,
        signature,
        services.settings.elevenlabs_webhook_secret,
        tolerance_seconds=services.settings.webhook_tolerance_seconds,
    )
    if not verdict.ok:
        return _rejected(verdict, "voice")

    event = parse_voice_event(_json_body(raw))
    with tracer.start_as_current_span(
        "webhook.voice", attributes={"webhook.type": getattr(event, "type", "unknown")}
    ):
        result = await asyncio.to_thread(
            services.outcomes.handle_voice_event, event, services.clock()
        )
    return result


@router.post("/whatsapp")
async def whatsapp_webhook(
    request: Request,
    signature: Optional[str] = Header(default=None, alias="X-Webhook-Signature"),
    event_type: Optional[str] = Header(default=None, alias="X-Webhook-Event"),
    timestamp: Optional[str] = Header(default=None, alias="X-Webhook-Timestamp"),
    services: OutreachServices = Depends(get_services),
):
    """Inbound WhatsApp messages; batched deliveries are handled in order."""
    raw = await request.body()
    verdict = verify_plain(
        raw,
        signature,
        services.settings.kapso_webhook_secret,
        timestamp_header=timestamp,
        tolerance_seconds=services.settings.webhook_tolerance_seconds,
    )
    if not verdict.ok:
        return _rejected(verdict, "whatsapp")

    events = parse_whatsapp_event(event_type, _json_body(raw))
    results: List[Dict[str, Any]] = []
    with tracer.start_as_current_span(
        "webhook.whatsapp", attributes={"webhook.type": event_type or "", "webhook.batch_size": len(events)}
    ) as span:
        for event in events:
            try:
                results.append(await services.whatsapp.handle_message(event))
            except OutreachError as exc:
                span.record_exception(exc)
                logger.error("WhatsApp message %s not answered: %s", event.message.id, exc.message)
                results.append({"status": "error", "reason": type(exc).__name__})
    return {"status": "processed", "results": results}

"""
ElevenLabs Conversational AI client.

Only the outbound Twilio call endpoint is used: the agent, its phone number and
the per-call dynamic variables go in, a conversation id comes back.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode

from apps.murphy.backend.src.errors import ConfigurationFailure, ProviderFailure
from utils.ml_logging import get_logger, mask_phone

logger = get_logger("services.elevenlabs")
tracer = trace.get_tracer(__name__)

PROVIDER = "elevenlabs"
OUTBOUND_CALL_PATH = "/v1/convai/twilio/outbound-call"


@dataclass(frozen=True)
class OutboundCallResult:
    conversation_id: str
    call_sid: Optional[str] = None


class ElevenLabsClient:
    def __init__(
        self,
        api_key: Optional[str],
        agent_id: Optional[str],
        phone_number_id: Optional[str],
        *,
        base_url: str = "https://api.elevenlabs.io",
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.agent_id = agent_id
        self.phone_number_id = phone_number_id
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def ensure_configured(self) -> None:
        missing = [
            name
            for name, value in (
                ("ELEVENLABS_API_KEY", self.api_key),
                ("ELEVENLABS_AGENT_ID", self.agent_id),
                ("ELEVENLABS_PHONE_NUMBER_ID", self.phone_number_id),
            )
            if not value
        ]
        if missing:
            logger.error("Voice provider not configured; missing %s", ", ".join(missing))
            raise ConfigurationFailure(f"voice provider not configured: missing {', '.join(missing)}")

    async def initiate_outbound_call(
        self, to_number: str, dynamic_variables: Dict[str, Any]
    ) -> OutboundCallResult:
        """
        Ask the provider to dial ``to_number`` with the configured agent.

        Raises ConfigurationFailure when credentials are absent and
        ProviderFailure on timeouts, non-2xx answers or a missing call id.
        """
        self.ensure_configured()
        body = {
            "agent_id": self.agent_id,
            "agent_phone_number_id": self.phone_number_id,
            "to_number": to_number,
            "conversation_initiation_client_data": {"dynamic_variables": dynamic_variables},
        }

        with tracer.start_as_current_span(
            "elevenlabs.outbound_call",
            kind=SpanKind.CLIENT,
            attributes={"peer.service": PROVIDER, "http.method": "POST", "http.route": OUTBOUND_CALL_PATH},
        ) as span:
            try:
                async with httpx.AsyncClient(
                    base_url=self.base_url,
                    timeout=self.timeout_seconds,
                    transport=self._transport,
                ) as client:
                    response = await client.post(
                        OUTBOUND_CALL_PATH,
                        json=body,
                        headers={"xi-api-key": self.api_key, "Content-Type": "application/json"},
                    )
            except httpx.TimeoutException as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, "timeout"))
                raise ProviderFailure("voice provider timed out", provider=PROVIDER) from exc
            except httpx.HTTPError as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                raise ProviderFailure(f"voice provider unreachable: {exc}", provider=PROVIDER) from exc

            span.set_attribute("http.status_code", response.status_code)
            if response.status_code >= 400:
                span.set_status(Status(StatusCode.ERROR, f"HTTP {response.status_code}"))
                logger.error(
                    "Outbound call to %s rejected: %s %s",
                    mask_phone(to_number),
                    response.status_code,
                    response.text[:200],
                )
                raise ProviderFailure(
                    f"voice provider rejected the call ({response.status_code})",
                    provider=PROVIDER,
                    http_status=response.status_code,
                    body=response.text,
                )

            try:
                data = response.json()
            except ValueError as exc:
                raise ProviderFailure(
                    "voice provider returned a non-JSON body",
                    provider=PROVIDER,
                    http_status=response.status_code,
                    body=response.text,
                ) from exc

            if not isinstance(data, dict):
                raise ProviderFailure(
                    "voice provider returned an unexpected JSON shape",
                    provider=PROVIDER,
                    http_status=response.status_code,
                    body=response.text,
                )

            if data.get("success") is False:
                raise ProviderFailure(
                    f"voice provider declined the call: {data.get('message') or 'no reason given'}",
                    provider=PROVIDER,
                    http_status=response.status_code,
                    body=response.text,
                )

            conversation_id = data.get("conversation_id") or data.get("call_id") or data.get("id")
            if not conversation_id:
                raise ProviderFailure(
                    "voice provider response had no conversation id",
                    provider=PROVIDER,
                    http_status=response.status_code,
                    body=response.text,
                )
            span.set_attribute("conversation.id", conversation_id)
            logger.info("Outbound call to %s accepted (%s)", mask_phone(to_number), conversation_id)
            return OutboundCallResult(conversation_id=conversation_id, call_sid=data.get("callSid"))

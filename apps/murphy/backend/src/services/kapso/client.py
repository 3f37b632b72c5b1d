"""
Kapso WhatsApp client.

Sends plain text messages through Kapso's Meta-compatible Cloud API proxy.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx
from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode

from apps.murphy.backend.src.errors import ConfigurationFailure, ProviderFailure
from utils.ml_logging import get_logger, mask_phone

logger = get_logger("services.kapso")
tracer = trace.get_tracer(__name__)

PROVIDER = "kapso"
GRAPH_VERSION = "v24.0"


class KapsoClient:
    def __init__(
        self,
        api_key: Optional[str],
        phone_number_id: Optional[str],
        *,
        base_url: str = "https://app.kapso.ai/api/meta",
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.phone_number_id = phone_number_id
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def send_text(self, to: str, body: str) -> Dict[str, Any]:
        """Send ``body`` to ``to``; returns the provider response JSON."""
        if not self.api_key or not self.phone_number_id:
            raise ConfigurationFailure("WhatsApp provider not configured: missing KAPSO_API_KEY or KAPSO_PHONE_NUMBER_ID")

        path = f"/{GRAPH_VERSION}/{self.phone_number_id}/messages"
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "text",
            "text": {"body": body},
        }

        with tracer.start_as_current_span(
            "kapso.send_text",
            kind=SpanKind.CLIENT,
            attributes={"peer.service": PROVIDER, "http.method": "POST"},
        ) as span:
            try:
                async with httpx.AsyncClient(
                    base_url=self.base_url,
                    timeout=self.timeout_seconds,
                    transport=self._transport,
                ) as client:
                    response = await client.post(
                        path,
                        json=payload,
                        headers={"X-API-Key": self.api_key, "Content-Type": "application/json"},
                    )
            except httpx.TimeoutException as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, "timeout"))
                raise ProviderFailure("WhatsApp provider timed out", provider=PROVIDER) from exc
            except httpx.HTTPError as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                raise ProviderFailure(f"WhatsApp provider unreachable: {exc}", provider=PROVIDER) from exc

            span.set_attribute("http.status_code", response.status_code)
            if response.status_code >= 400:
                span.set_status(Status(StatusCode.ERROR, f"HTTP {response.status_code}"))
                logger.error(
                    "WhatsApp send to %s rejected: %s", mask_phone(to), response.status_code
                )
                raise ProviderFailure(
                    f"WhatsApp provider rejected the message ({response.status_code})",
                    provider=PROVIDER,
                    http_status=response.status_code,
                    body=response.text,
                )

            logger.info("WhatsApp message sent to %s", mask_phone(to))
            try:
                return response.json()
            except ValueError:
                return {"raw": response.text}

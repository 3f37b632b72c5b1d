"""
OpenTelemetry tracing configuration.

Configuration via environment variables:
- APPLICATIONINSIGHTS_CONNECTION_STRING: Export spans to Azure Monitor when set
- DISABLE_CLOUD_TELEMETRY: Set to "true" to disable telemetry export entirely
- SERVICE_NAME / SERVICE_NAMESPACE / SERVICE_VERSION / ENVIRONMENT: Resource attributes

Without a connection string a plain SDK tracer provider is installed so spans
still carry trace ids into the logs.
"""

from __future__ import annotations

import logging
import os
import re
import socket
from dataclasses import dataclass
from typing import List, Optional, Pattern

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, SpanProcessor, TracerProvider

from utils.ml_logging import get_logger

logger = get_logger("utils.telemetry")


# ═══════════════════════════════════════════════════════════════════════════════
# CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class TelemetryConfig:
    """Telemetry configuration loaded from environment."""

    enabled: bool = True
    connection_string: Optional[str] = None
    service_name: str = "murphy-outreach"
    service_namespace: str = "murphy"
    service_version: Optional[str] = None
    environment: Optional[str] = None

    @classmethod
    def from_env(cls) -> "TelemetryConfig":
        """Create configuration from environment variables."""
        disabled = os.getenv("DISABLE_CLOUD_TELEMETRY", "false").lower() in ("true", "1", "yes")
        return cls(
            enabled=not disabled,
            connection_string=os.getenv("APPLICATIONINSIGHTS_CONNECTION_STRING"),
            service_name=os.getenv("SERVICE_NAME", "murphy-outreach"),
            service_namespace=os.getenv("SERVICE_NAMESPACE", "murphy"),
            service_version=os.getenv("SERVICE_VERSION") or os.getenv("APP_VERSION"),
            environment=os.getenv("ENVIRONMENT"),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# SPAN FILTERING
# ═══════════════════════════════════════════════════════════════════════════════

NOISY_SPAN_PATTERNS: List[Pattern[str]] = [
    re.compile(r".*redis[._](ping|pool|connection).*", re.IGNORECASE),
    re.compile(r"^(GET|POST)\s+/api/v1/health.*", re.IGNORECASE),
    re.compile(r".*(poll|heartbeat)[._].*", re.IGNORECASE),
]

NOISY_LOGGERS = [
    "azure.identity", "azure.core.pipeline", "azure.monitor.opentelemetry.exporter",
    "httpx", "httpcore", "openai._base_client",
    "uvicorn.access", "starlette.routing",
    "opentelemetry.sdk.trace", "opentelemetry.exporter",
]


def _suppress_noisy_loggers(level: int = logging.WARNING) -> None:
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level)


class FilteringSpanProcessor(SpanProcessor):
    """SpanProcessor wrapper that drops spans matching :data:`NOISY_SPAN_PATTERNS`."""

    def __init__(self, next_processor: SpanProcessor):
        self._next = next_processor

    def on_start(self, span, parent_context=None) -> None:
        self._next.on_start(span, parent_context)

    def on_end(self, span: ReadableSpan) -> None:
        for pattern in NOISY_SPAN_PATTERNS:
            if pattern.match(span.name):
                return
        self._next.on_end(span)

    def shutdown(self) -> None:
        self._next.shutdown()

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return self._next.force_flush(timeout_millis)


def _build_resource(config: TelemetryConfig) -> Resource:
    attrs = {
        "service.name": config.service_name,
        "service.namespace": config.service_namespace,
        "service.instance.id": os.getenv("HOSTNAME") or socket.gethostname(),
    }
    if config.environment:
        attrs["service.environment"] = config.environment
    if config.service_version:
        attrs["service.version"] = config.service_version
    return Resource(attributes=attrs)


def _install_filtering_processor() -> None:
    provider = trace.get_tracer_provider()
    if hasattr(provider, "_active_span_processor"):
        provider._active_span_processor = FilteringSpanProcessor(provider._active_span_processor)


# ═══════════════════════════════════════════════════════════════════════════════
# MAIN SETUP FUNCTION
# ═══════════════════════════════════════════════════════════════════════════════

_configured = False


def setup_telemetry(config: Optional[TelemetryConfig] = None) -> bool:
    """
    Configure the global tracer provider once per process.

    Returns True if a provider was installed by this call or an earlier one.
    """
    global _configured
    if _configured:
        logger.debug("Telemetry already configured - skipping")
        return True

    config = config or TelemetryConfig.from_env()
    if not config.enabled:
        logger.info("Telemetry disabled via DISABLE_CLOUD_TELEMETRY")
        return False

    _suppress_noisy_loggers()
    resource = _build_resource(config)

    if config.connection_string:
        from azure.monitor.opentelemetry import configure_azure_monitor

        configure_azure_monitor(
            resource=resource,
            connection_string=config.connection_string,
            logger_name="murphy",
            enable_live_metrics=False,
            instrumentation_options={
                "fastapi": {"enabled": False},
                "httpx": {"enabled": False},
                "redis": {"enabled": False},
            },
        )
        logger.info("Azure Monitor exporter configured for %s", config.service_name)
    else:
        trace.set_tracer_provider(TracerProvider(resource=resource))
        logger.info("Local tracer provider configured (no connection string)")

    _install_filtering_processor()
    _configured = True
    return True

"""
Application Settings
====================

All environment-loaded configuration for the outreach backend, organized by
domain. This is the single source of truth for runtime configuration.

Usage:
    from apps.murphy.backend.config import get_settings

    settings = get_settings()
    settings.elevenlabs_agent_id
    settings.anomaly.glucose_low
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AnomalyThresholds(BaseModel):
    """Plausible bounds per measurement; values outside are flagged for follow-up."""

    glucose_low: float = Field(default=70.0, description="mg/dL below which a reading is unusual")
    glucose_high: float = Field(default=250.0, description="mg/dL above which a reading is unusual")
    insulin_dose_high: float = Field(default=50.0, description="Units above which a dose is unusual")
    sleep_low: float = Field(default=4.0, description="Hours below which sleep is unusual")
    sleep_high: float = Field(default=12.0, description="Hours above which sleep is unusual")
    stress_high: int = Field(default=9, description="Stress level (1-10) at or above which to follow up")
    dizziness_high: int = Field(default=7, description="Dizziness severity (1-10) at or above which to follow up")


class OutreachSettings(BaseSettings):
    """Application settings with environment variable loading."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Voice provider (ElevenLabs Conversational AI)
    elevenlabs_api_key: Optional[str] = Field(default=None, description="xi-api-key for outbound calls")
    elevenlabs_agent_id: Optional[str] = Field(default=None, description="Conversational agent id")
    elevenlabs_phone_number_id: Optional[str] = Field(default=None, description="Agent phone number id")
    elevenlabs_base_url: str = Field(default="https://api.elevenlabs.io")
    elevenlabs_webhook_secret: Optional[str] = Field(default=None, description="HMAC secret for post-call webhooks")

    # WhatsApp provider (Kapso)
    kapso_api_key: Optional[str] = Field(default=None)
    kapso_phone_number_id: Optional[str] = Field(default=None)
    kapso_base_url: str = Field(default="https://app.kapso.ai/api/meta")
    kapso_webhook_secret: Optional[str] = Field(default=None, description="HMAC secret for WhatsApp webhooks")

    # Agent tool surface
    agent_tool_secret: Optional[str] = Field(default=None, description="Shared secret presented by the voice agent")

    # Chat model used for WhatsApp conversations
    openai_api_key: Optional[str] = Field(default=None)
    openai_base_url: Optional[str] = Field(default=None)
    openai_model: str = Field(default="gpt-4o-mini")
    chat_max_tool_rounds: int = Field(default=4)
    chat_memory_max_conversations: int = Field(
        default=1000, description="Conversations whose history is kept in process (least recently used dropped)"
    )

    # Timing
    provider_timeout_seconds: float = Field(default=10.0)
    webhook_tolerance_seconds: int = Field(default=1800)
    default_utc_offset_minutes: int = Field(default=-300, description="Fixed offset used when a patient has none")
    context_history_limit: int = Field(default=10)

    # Call retry policy
    call_min_duration_seconds: int = Field(default=20)
    call_max_retries: int = Field(default=3)
    call_retry_delay_seconds: int = Field(default=300)
    call_fallback_check_seconds: int = Field(default=360)

    # Storage
    redis_host: Optional[str] = Field(default=None, description="Empty keeps schedules/sessions in memory")
    redis_port: int = Field(default=6380)
    redis_access_key: Optional[str] = Field(default=None)
    redis_ssl: bool = Field(default=True)
    redis_key_prefix: str = Field(default="murphy")

    anomaly: AnomalyThresholds = Field(default_factory=AnomalyThresholds)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Optional[str] = Field(default=None, description="logging format string; trace ids available as %(trace_id)s")

    @property
    def uses_redis(self) -> bool:
        return bool(self.redis_host)


_settings: Optional[OutreachSettings] = None


def get_settings() -> OutreachSettings:
    """Get or create settings instance (singleton pattern)."""
    global _settings
    if _settings is None:
        _settings = OutreachSettings()
    return _settings


def reload_settings() -> OutreachSettings:
    """Force reload of settings (useful for testing)."""
    global _settings
    _settings = None
    return get_settings()

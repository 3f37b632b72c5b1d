"""
Service wiring.

Builds every collaborator of the outreach layer from ``OutreachSettings``.
The FastAPI lifespan stores the resulting :class:`OutreachServices` on
``app.state.services``; tests build one directly with in-memory stores and
mock transports.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

import httpx
from openai import AsyncOpenAI

from apps.murphy.backend.agents.chat import ChatAgent, ConversationMemory
from apps.murphy.backend.agents.tools.anomaly import AnomalyPolicy
from apps.murphy.backend.config import OutreachSettings
from apps.murphy.backend.src.channels.outcomes import OutcomeHandler
from apps.murphy.backend.src.channels.outreach import OutreachService
from apps.murphy.backend.src.channels.voice import OutboundCallAdapter
from apps.murphy.backend.src.channels.whatsapp import WhatsAppAdapter
from apps.murphy.backend.src.clock import utc_now
from apps.murphy.backend.src.context.builder import PatientContextBuilder
from apps.murphy.backend.src.scheduling.scheduler import OutreachScheduler
from apps.murphy.backend.src.services.elevenlabs.client import ElevenLabsClient
from apps.murphy.backend.src.services.kapso.client import KapsoClient
from apps.murphy.backend.src.stores.base import (
    HealthRecordStore,
    IdempotencyGuard,
    PatientDirectory,
    ScheduleRepository,
    SessionRepository,
)
from apps.murphy.backend.src.stores.memory import (
    InMemoryHealthRecordStore,
    InMemoryIdempotencyGuard,
    InMemoryPatientDirectory,
    InMemoryScheduleRepository,
    InMemorySessionRepository,
)
from apps.murphy.backend.src.stores.redis_store import (
    RedisIdempotencyGuard,
    RedisScheduleRepository,
    RedisSessionRepository,
)
from src.redis.manager import RedisManager
from utils.ml_logging import get_logger

logger = get_logger("container")


@dataclass
class OutreachServices:
    settings: OutreachSettings
    patients: PatientDirectory
    records: HealthRecordStore
    schedules: ScheduleRepository
    sessions: SessionRepository
    dedupe: IdempotencyGuard
    policy: AnomalyPolicy
    scheduler: OutreachScheduler
    context_builder: PatientContextBuilder
    voice: OutboundCallAdapter
    whatsapp: WhatsAppAdapter
    outcomes: OutcomeHandler
    outreach: OutreachService
    chat_agent: ChatAgent
    clock: Callable[[], datetime]
    redis: Optional[RedisManager] = None

    def close(self) -> None:
        if self.redis is not None:
            self.redis.close()


def _stores(settings: OutreachSettings):
    if not settings.uses_redis:
        logger.info("REDIS_HOST not set; schedules and sessions kept in memory")
        return None, InMemoryScheduleRepository(), InMemorySessionRepository(), InMemoryIdempotencyGuard()

    manager = RedisManager(
        host=settings.redis_host,
        access_key=settings.redis_access_key,
        port=settings.redis_port,
        ssl=settings.redis_ssl,
        key_prefix=settings.redis_key_prefix,
    )
    return (
        manager,
        RedisScheduleRepository(manager),
        RedisSessionRepository(manager),
        RedisIdempotencyGuard(manager),
    )


def build_services(
    settings: OutreachSettings,
    *,
    patients: Optional[PatientDirectory] = None,
    records: Optional[HealthRecordStore] = None,
    chat_client: Any = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Callable[[], datetime] = utc_now,
) -> OutreachServices:
    """
    Wire the outreach layer.

    ``patients`` and ``records`` stand for the external patient-record store
    and default to empty in-memory stores. ``chat_client`` overrides the
    OpenAI client; ``transport`` is handed to both provider HTTP clients.
    """
    redis_manager, schedules, sessions, dedupe = _stores(settings)
    patients = patients if patients is not None else InMemoryPatientDirectory()
    records = records if records is not None else InMemoryHealthRecordStore()

    if chat_client is None and settings.openai_api_key:
        chat_client = AsyncOpenAI(api_key=settings.openai_api_key, base_url=settings.openai_base_url)

    policy = AnomalyPolicy(settings.anomaly)
    context_builder = PatientContextBuilder(
        patients,
        records,
        history_limit=settings.context_history_limit,
        default_utc_offset_minutes=settings.default_utc_offset_minutes,
    )
    scheduler = OutreachScheduler(
        schedules, patients, default_utc_offset_minutes=settings.default_utc_offset_minutes
    )
    chat_agent = ChatAgent(
        chat_client,
        model=settings.openai_model,
        max_tool_rounds=settings.chat_max_tool_rounds,
        memory=ConversationMemory(max_conversations=settings.chat_memory_max_conversations),
    )
    voice = OutboundCallAdapter(
        ElevenLabsClient(
            settings.elevenlabs_api_key,
            settings.elevenlabs_agent_id,
            settings.elevenlabs_phone_number_id,
            base_url=settings.elevenlabs_base_url,
            timeout_seconds=settings.provider_timeout_seconds,
            transport=transport,
        ),
        context_builder,
        sessions,
        clock=clock,
    )
    whatsapp = WhatsAppAdapter(
        KapsoClient(
            settings.kapso_api_key,
            settings.kapso_phone_number_id,
            base_url=settings.kapso_base_url,
            timeout_seconds=settings.provider_timeout_seconds,
            transport=transport,
        ),
        chat_agent,
        patients,
        records,
        sessions,
        context_builder,
        policy,
        dedupe,
        clock=clock,
    )
    outcomes = OutcomeHandler(
        sessions,
        min_duration_seconds=settings.call_min_duration_seconds,
        max_retries=settings.call_max_retries,
        retry_delay_seconds=settings.call_retry_delay_seconds,
        fallback_check_seconds=settings.call_fallback_check_seconds,
    )
    outreach = OutreachService(scheduler, outcomes, voice, whatsapp, sessions, clock=clock)

    return OutreachServices(
        settings=settings,
        patients=patients,
        records=records,
        schedules=schedules,
        sessions=sessions,
        dedupe=dedupe,
        policy=policy,
        scheduler=scheduler,
        context_builder=context_builder,
        voice=voice,
        whatsapp=whatsapp,
        outcomes=outcomes,
        outreach=outreach,
        chat_agent=chat_agent,
        clock=clock,
        redis=redis_manager,
    )

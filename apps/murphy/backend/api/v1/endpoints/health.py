"""
Health Endpoints
================

Liveness and readiness probes.
"""

from __future__ import annotations

import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from apps.murphy.backend.api.dependencies import get_services
from apps.murphy.backend.src.container import OutreachServices

router = APIRouter()


@router.get("/health")
async def health_check():
    return {"status": "healthy", "timestamp": time.time()}


@router.get("/readiness")
async def readiness_check(services: OutreachServices = Depends(get_services)):
    """Reports storage reachability and which providers are configured."""
    settings = services.settings
    checks = {
        "storage": "memory",
        "voice_provider": bool(
            settings.elevenlabs_api_key and settings.elevenlabs_agent_id and settings.elevenlabs_phone_number_id
        ),
        "whatsapp_provider": bool(settings.kapso_api_key and settings.kapso_phone_number_id),
        "chat_model": services.chat_agent.client is not None,
    }
    ready = True
    if services.redis is not None:
        reachable = await services.redis.ping_async()
        checks["storage"] = "redis" if reachable else "redis_unreachable"
        ready = reachable

    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "not_ready", "checks": checks},
    )

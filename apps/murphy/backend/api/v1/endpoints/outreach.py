"""
Outreach Trigger Endpoint
=========================

Entry point for the external periodic trigger (cron, Logic App, scheduler
job). Each call runs one outreach tick.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from apps.murphy.backend.api.dependencies import get_services, require_tool_secret
from apps.murphy.backend.src.container import OutreachServices

router = APIRouter(dependencies=[Depends(require_tool_secret)])


@router.post("/tick")
async def run_outreach_tick(services: OutreachServices = Depends(get_services)) -> Dict[str, Any]:
    summary = await services.outreach.tick()
    return {"status": "ok", **summary}

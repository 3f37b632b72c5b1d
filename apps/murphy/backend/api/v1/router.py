"""
API V1 Router
=============

Main router for API v1 endpoints.
"""

from fastapi import APIRouter

from .endpoints import calls, health, outreach, schedules, tools, webhooks

v1_router = APIRouter(prefix="/api/v1")

v1_router.include_router(health.router, tags=["health"])
v1_router.include_router(calls.router, prefix="/calls", tags=["Call Management"])
v1_router.include_router(schedules.router, prefix="/patients", tags=["Schedules"])
v1_router.include_router(tools.router, prefix="/agent/tools", tags=["Agent Tools"])
v1_router.include_router(outreach.router, prefix="/outreach", tags=["Outreach"])
v1_router.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])

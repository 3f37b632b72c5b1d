"""
Murphy Outreach Backend
=======================

FastAPI application exposing provider webhooks, the voice agent's tool
surface, schedule management and the periodic outreach trigger.

Run locally:
    uvicorn apps.murphy.backend.main:app --reload --port 8010
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from apps.murphy.backend.agents.tools import initialize_tools
from apps.murphy.backend.api.v1.router import v1_router
from apps.murphy.backend.config import get_settings
from apps.murphy.backend.src.container import OutreachServices, build_services
from apps.murphy.backend.src.errors import OutreachError, ProviderFailure, ValidationFailure
from utils.ml_logging import configure_logging, get_logger
from utils.telemetry_config import setup_telemetry

load_dotenv()
setup_telemetry()

logger = get_logger("main")


def _error_body(exc: OutreachError) -> dict:
    body = {"success": False, "error": type(exc).__name__, "detail": exc.message}
    if isinstance(exc, ValidationFailure) and exc.field:
        body["field"] = exc.field
    if isinstance(exc, ProviderFailure):
        body["provider"] = exc.provider
        if exc.http_status is not None:
            body["provider_status"] = exc.http_status
    return body


async def outreach_error_handler(request: Request, exc: OutreachError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected (%d): %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request schema errors use the same 400 envelope as domain validation."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path", "header")]
    failure = ValidationFailure(
        first.get("msg", "invalid request"),
        field=location[-1] if location else None,
    )
    return await outreach_error_handler(request, failure)


def create_app(services: Optional[OutreachServices] = None) -> FastAPI:
    """
    Build the application. Tests pass a prebuilt ``services`` container;
    otherwise one is created from settings at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        initialize_tools()
        owned = services is None
        app.state.services = services or build_services(get_settings())
        settings = app.state.services.settings
        configure_logging(settings.log_level, settings.log_format)
        logger.info(
            "Murphy outreach backend started (storage=%s)",
            "redis" if app.state.services.redis is not None else "memory",
        )
        try:
            yield
        finally:
            if owned:
                app.state.services.close()
            logger.info("Murphy outreach backend stopped")

    app = FastAPI(
        title="Murphy Outreach API",
        description="Patient outreach and data-capture agent layer",
        version="1.0.0",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services
    app.add_exception_handler(OutreachError, outreach_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(v1_router)
    return app


app = create_app()

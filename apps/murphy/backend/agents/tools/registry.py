"""
Tool Registry Core
==================

Central registry for the measurement tools a conversational agent may call.

Every executor takes a validated pydantic argument model plus a
:class:`ToolContext` that carries the bound patient identity. The patient id
is never read from the remote conversation's arguments.

Usage:
    from apps.murphy.backend.agents.tools.registry import (
        execute_tool,
        get_tools_for_agent,
        initialize_tools,
    )
"""

from __future__ import annotations

import asyncio
import importlib
import inspect
import sys
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, TypeAlias, get_type_hints

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import BaseModel, ValidationError

from apps.murphy.backend.agents.tools.anomaly import AnomalyPolicy
from apps.murphy.backend.src.errors import ValidationFailure
from apps.murphy.backend.src.stores.base import HealthRecordStore
from utils.ml_logging import get_logger

logger = get_logger("agents.tools.registry")
tracer = trace.get_tracer(__name__)

ToolExecutor: TypeAlias = Callable[..., Dict[str, Any]]

# Arguments the remote conversation must never be able to steer.
BOUND_IDENTITY_ARGS = ("patient_id", "patientId", "user_id")


@dataclass
class ToolContext:
    """Per-invocation state; built by the router, never by the remote side."""

    patient_id: str
    records: HealthRecordStore
    policy: AnomalyPolicy
    now: datetime
    utc_offset_minutes: int
    conversation_id: Optional[str] = None


@dataclass
class ToolDefinition:
    """Complete tool definition with schema and executor."""

    name: str
    schema: Dict[str, Any]
    executor: ToolExecutor
    description: str = ""
    tags: Set[str] = field(default_factory=set)


# ═══════════════════════════════════════════════════════════════════════════════
# REGISTRY STATE
# ═══════════════════════════════════════════════════════════════════════════════

_TOOL_DEFINITIONS: Dict[str, ToolDefinition] = {}
_INITIALIZED: bool = False

_TOOL_MODULES = (
    "apps.murphy.backend.agents.tools.glucose",
    "apps.murphy.backend.agents.tools.insulin",
    "apps.murphy.backend.agents.tools.wellness",
)


def register_tool(
    name: str,
    schema: Dict[str, Any],
    executor: ToolExecutor,
    *,
    tags: Optional[Set[str]] = None,
    override: bool = False,
) -> None:
    """
    Register a tool with schema and executor.

    :param name: Unique tool name
    :param schema: OpenAI-compatible function schema
    :param executor: ``(args_model, context) -> dict``
    :param tags: Optional categorization tags (e.g., {'glucose', 'save'})
    :param override: If True, allow overriding existing registration
    """
    if name in _TOOL_DEFINITIONS and not override:
        logger.debug("Tool '%s' already registered, skipping", name)
        return

    _TOOL_DEFINITIONS[name] = ToolDefinition(
        name=name,
        schema=schema,
        executor=executor,
        description=schema.get("description", ""),
        tags=tags or set(),
    )
    logger.debug("Registered tool: %s", name)


def list_tools(*, tags: Optional[Set[str]] = None) -> List[str]:
    """
    List registered tool names with optional filtering.

    :param tags: Only return tools with ALL specified tags
    """
    return [
        name
        for name, defn in _TOOL_DEFINITIONS.items()
        if not tags or tags.issubset(defn.tags)
    ]


def get_tools_for_agent(tool_names: List[str]) -> List[Dict[str, Any]]:
    """
    Build OpenAI-compatible tool list for specified tools.

    :param tool_names: List of tool names to include
    :return: List of {"type": "function", "function": schema} dicts
    """
    tools = []
    for name in tool_names:
        defn = _TOOL_DEFINITIONS.get(name)
        if defn:
            tools.append({"type": "function", "function": defn.schema})
        else:
            logger.warning("Tool '%s' not found in registry", name)
    return tools


# ═══════════════════════════════════════════════════════════════════════════════
# EXECUTION HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def _strip_identity(name: str, raw_args: Dict[str, Any]) -> Dict[str, Any]:
    clean = dict(raw_args or {})
    for key in BOUND_IDENTITY_ARGS:
        if key in clean:
            clean.pop(key)
            logger.warning("Discarded '%s' supplied to tool '%s'; using bound patient", key, name)
    return clean


def _prepare_args(fn: Callable[..., Any], raw_args: Dict[str, Any]) -> Tuple[Any, ...]:
    """Coerce dict arguments into the executor's declared argument model."""
    params = list(inspect.signature(fn).parameters.values())
    if not params:
        return ()
    annotation = get_type_hints(fn).get(params[0].name)
    if inspect.isclass(annotation) and issubclass(annotation, BaseModel):
        return (annotation.model_validate(raw_args),)
    return (raw_args,)


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "arguments"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


def validation_error(message: str, field: Optional[str] = None) -> Dict[str, Any]:
    result: Dict[str, Any] = {
        "success": False,
        "error_code": "validation_error",
        "error": message,
        "message": f"Invalid input: {message}",
    }
    if field:
        result["field"] = field
    return result


async def execute_tool(name: str, arguments: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
    """
    Execute a registered tool for the bound patient in ``context``.

    Never raises: validation problems and executor failures come back as
    ``{"success": False, ...}`` so the conversation can recover.
    """
    defn = _TOOL_DEFINITIONS.get(name)
    if not defn:
        return {
            "success": False,
            "error_code": "unknown_tool",
            "error": f"Tool '{name}' not found",
            "message": f"Tool '{name}' is not registered.",
        }

    with tracer.start_as_current_span(
        f"tool.{name}",
        attributes={
            "tool.name": name,
            "patient.id": context.patient_id,
            "conversation.id": context.conversation_id or "",
        },
    ) as span:
        try:
            args = _prepare_args(defn.executor, _strip_identity(name, arguments))
        except ValidationError as exc:
            message = _validation_message(exc)
            logger.info("Tool '%s' rejected arguments: %s", name, message)
            span.set_attribute("tool.outcome", "validation_error")
            return validation_error(message)

        try:
            result = await asyncio.to_thread(defn.executor, *args, context)
        except ValidationFailure as exc:
            span.set_attribute("tool.outcome", "validation_error")
            return validation_error(exc.message, exc.field)
        except Exception as exc:
            logger.exception("Tool '%s' execution failed", name)
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            return {
                "success": False,
                "error_code": "internal_error",
                "error": str(exc),
                "message": "The measurement could not be saved. Please try again.",
            }

        span.set_attribute("tool.outcome", "success" if result.get("success") else "rejected")
        span.set_attribute("tool.unusual", bool(result.get("unusual")))
        return result


# ═══════════════════════════════════════════════════════════════════════════════
# INITIALIZATION
# ═══════════════════════════════════════════════════════════════════════════════

def initialize_tools() -> int:
    """
    Load and register all tools.

    Returns the number of tools registered.
    """
    global _INITIALIZED

    if _INITIALIZED:
        logger.debug("Tools already initialized, skipping")
        return len(_TOOL_DEFINITIONS)

    # Importing a tool module registers its tools; reload after a reset
    for module_name in _TOOL_MODULES:
        if module_name in sys.modules:
            importlib.reload(sys.modules[module_name])
        else:
            importlib.import_module(module_name)

    _INITIALIZED = True
    logger.info("Tool registry initialized with %d tools", len(_TOOL_DEFINITIONS))
    return len(_TOOL_DEFINITIONS)


def reset_registry() -> None:
    """Reset the registry (for testing)."""
    global _INITIALIZED
    _TOOL_DEFINITIONS.clear()
    _INITIALIZED = False


__all__ = [
    "ToolContext",
    "ToolDefinition",
    "ToolExecutor",
    "register_tool",
    "list_tools",
    "get_tools_for_agent",
    "execute_tool",
    "validation_error",
    "initialize_tools",
    "reset_registry",
]

"""
Measurement tools for voice and chat agents.

Usage:
    from apps.murphy.backend.agents.tools import ToolRouter

    router = ToolRouter(patient_id, records, policy, utc_offset_minutes=-300)
    result = await router.invoke("save_glucose", {"value": 110})
"""

from apps.murphy.backend.agents.tools.anomaly import AnomalyPolicy
from apps.murphy.backend.agents.tools.registry import (
    ToolContext,
    execute_tool,
    get_tools_for_agent,
    initialize_tools,
    list_tools,
    reset_registry,
)
from apps.murphy.backend.agents.tools.router import ToolRouter, measurement_tool_names

__all__ = [
    "AnomalyPolicy",
    "ToolContext",
    "ToolRouter",
    "execute_tool",
    "get_tools_for_agent",
    "initialize_tools",
    "list_tools",
    "measurement_tool_names",
    "reset_registry",
]

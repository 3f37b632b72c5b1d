"""
Conversational Tool Router
==========================

Binds one patient identity to the measurement tools for the lifetime of a
conversation. Channel adapters create one router per session and forward the
agent's tool calls through :meth:`ToolRouter.invoke`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from apps.murphy.backend.agents.tools.anomaly import AnomalyPolicy
from apps.murphy.backend.agents.tools.registry import (
    ToolContext,
    execute_tool,
    get_tools_for_agent,
    initialize_tools,
    list_tools,
)
from apps.murphy.backend.src.clock import utc_now
from apps.murphy.backend.src.stores.base import HealthRecordStore

MEASUREMENT_TAGS = ("glucose", "insulin", "sleep", "stress", "dizziness")


def measurement_tool_names() -> List[str]:
    initialize_tools()
    names: List[str] = []
    for tag in MEASUREMENT_TAGS:
        names.extend(sorted(list_tools(tags={tag})))
    return names


class ToolRouter:
    def __init__(
        self,
        patient_id: str,
        records: HealthRecordStore,
        policy: AnomalyPolicy,
        *,
        utc_offset_minutes: int,
        conversation_id: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        if not patient_id:
            raise ValueError("ToolRouter requires a bound patient id")
        self.patient_id = patient_id
        self.records = records
        self.policy = policy
        self.utc_offset_minutes = utc_offset_minutes
        self.conversation_id = conversation_id
        self.clock = clock
        self._allowed = set(measurement_tool_names())

    def available_tools(self) -> List[Dict[str, Any]]:
        """OpenAI function-tool list for the chat completion request."""
        return get_tools_for_agent(sorted(self._allowed))

    async def invoke(self, name: str, arguments: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if name not in self._allowed:
            return {
                "success": False,
                "error_code": "unknown_tool",
                "error": f"Tool '{name}' not found",
                "message": f"Tool '{name}' is not available in this conversation.",
            }
        context = ToolContext(
            patient_id=self.patient_id,
            records=self.records,
            policy=self.policy,
            now=self.clock(),
            utc_offset_minutes=self.utc_offset_minutes,
            conversation_id=self.conversation_id,
        )
        return await execute_tool(name, arguments or {}, context)

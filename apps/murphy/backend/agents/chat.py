"""
WhatsApp Chat Agent
===================

Tool-calling loop over an OpenAI-compatible chat completion endpoint. The
model sees the patient's context in its system prompt and may call the
measurement tools exposed by the session's :class:`ToolRouter`; tool results
are fed back until the model answers in plain text or the round limit is hit.
"""

from __future__ import annotations

import json
import threading
from collections import OrderedDict, deque
from typing import Any, Deque, Dict, List, Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from apps.murphy.backend.agents.tools.router import ToolRouter
from apps.murphy.backend.src.context.builder import PatientContext
from apps.murphy.backend.src.errors import ConfigurationFailure, ProviderFailure
from utils.ml_logging import get_logger

logger = get_logger("agents.chat")
tracer = trace.get_tracer(__name__)

FALLBACK_REPLY = "Sorry, I could not process your message. Please try again in a moment."

SYSTEM_PROMPT = """You are Murphy, a friendly assistant for people living with diabetes.
Answer briefly and warmly. When the patient reports a measurement, record it with the
matching tool. If a tool result is marked unusual, ask the follow-up question it gives
before moving on. Always ask whether insulin was rapid or basal if the patient did not say.

Patient: {patient_name}, {patient_age} years, diabetes {diabetes_type} (diagnosed {diagnosis_year}).
Recent glucose: {recent_glucometries}
Recent sleep: {recent_sleep}
Recent insulin: {recent_insulin}
Rapid insulin today: {insulin_rapid_schedule}
Basal insulin today: {insulin_basal_schedule}
"""

UNREGISTERED_PROMPT = """You are Murphy, a friendly assistant for people living with diabetes.
The sender is not registered. Answer briefly and let them know they need to register
with their care team before you can log measurements."""


class ConversationMemory:
    """
    Per-conversation message history kept in process.

    Each conversation keeps its last ``max_messages`` messages; once more than
    ``max_conversations`` are held, the least recently used one is dropped.
    """

    def __init__(self, max_messages: int = 20, max_conversations: int = 1000):
        self.max_messages = max_messages
        self.max_conversations = max_conversations
        self._lock = threading.Lock()
        self._history: "OrderedDict[str, Deque[Dict[str, Any]]]" = OrderedDict()

    def __len__(self) -> int:
        with self._lock:
            return len(self._history)

    def get(self, conversation_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            history = self._history.get(conversation_id)
            if history is None:
                return []
            self._history.move_to_end(conversation_id)
            return list(history)

    def append(self, conversation_id: str, *messages: Dict[str, Any]) -> None:
        with self._lock:
            history = self._history.get(conversation_id)
            if history is None:
                history = self._history[conversation_id] = deque(maxlen=self.max_messages)
            self._history.move_to_end(conversation_id)
            history.extend(messages)
            while len(self._history) > self.max_conversations:
                evicted, _ = self._history.popitem(last=False)
                logger.debug("Dropped chat history for %s", evicted)

    def forget(self, conversation_id: str) -> None:
        with self._lock:
            self._history.pop(conversation_id, None)


class ChatAgent:
    def __init__(
        self,
        client: Any,
        *,
        model: str,
        max_tool_rounds: int = 4,
        timeout_seconds: float = 30.0,
        memory: Optional[ConversationMemory] = None,
    ):
        self.client = client
        self.model = model
        self.max_tool_rounds = max_tool_rounds
        self.timeout_seconds = timeout_seconds
        self.memory = memory or ConversationMemory()

    def _system_prompt(self, context: Optional[PatientContext]) -> str:
        if context is None:
            return UNREGISTERED_PROMPT
        return SYSTEM_PROMPT.format(**context.as_dynamic_variables())

    async def _complete(self, messages: List[Dict[str, Any]], tools: List[Dict[str, Any]]) -> Any:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "timeout": self.timeout_seconds,
        }
        if tools:
            kwargs["tools"] = tools
        try:
            return await self.client.chat.completions.create(**kwargs)
        except Exception as exc:
            raise ProviderFailure(f"chat model request failed: {exc}", provider="openai") from exc

    async def _run_tool_call(self, call: Any, router: ToolRouter) -> Dict[str, Any]:
        name = call.function.name
        try:
            arguments = json.loads(call.function.arguments or "{}")
        except json.JSONDecodeError:
            logger.warning("Model sent invalid JSON arguments for %s", name)
            result: Dict[str, Any] = {
                "success": False,
                "error_code": "validation_error",
                "message": "Arguments were not valid JSON.",
            }
        else:
            result = await router.invoke(name, arguments if isinstance(arguments, dict) else {})
        return {"role": "tool", "tool_call_id": call.id, "content": json.dumps(result, default=str)}

    async def respond(
        self,
        conversation_id: str,
        text: str,
        *,
        router: Optional[ToolRouter],
        context: Optional[PatientContext],
    ) -> str:
        """
        Produce the reply to one inbound message.

        Without a router (unknown sender) no tools are offered. Raises
        ConfigurationFailure if no chat client is configured.
        """
        if self.client is None:
            raise ConfigurationFailure("chat model not configured: missing OPENAI_API_KEY")

        user_message = {"role": "user", "content": text}
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": self._system_prompt(context)},
            *self.memory.get(conversation_id),
            user_message,
        ]
        tools = router.available_tools() if router is not None else []

        with tracer.start_as_current_span(
            "chat.respond",
            attributes={"conversation.id": conversation_id, "gen_ai.request.model": self.model},
        ) as span:
            reply: Optional[str] = None
            for round_index in range(self.max_tool_rounds + 1):
                offer_tools = tools if round_index < self.max_tool_rounds else []
                response = await self._complete(messages, offer_tools)
                message = response.choices[0].message
                tool_calls = getattr(message, "tool_calls", None) or []

                if not tool_calls or router is None:
                    reply = (message.content or "").strip() or FALLBACK_REPLY
                    break

                messages.append(
                    {
                        "role": "assistant",
                        "content": message.content,
                        "tool_calls": [
                            {
                                "id": call.id,
                                "type": "function",
                                "function": {
                                    "name": call.function.name,
                                    "arguments": call.function.arguments or "{}",
                                },
                            }
                            for call in tool_calls
                        ],
                    }
                )
                for call in tool_calls:
                    messages.append(await self._run_tool_call(call, router))
                span.set_attribute("chat.tool_rounds", round_index + 1)

            if reply is None:
                logger.warning("Tool round limit reached for %s", conversation_id)
                span.set_status(Status(StatusCode.ERROR, "tool round limit"))
                reply = FALLBACK_REPLY

            self.memory.append(conversation_id, user_message, {"role": "assistant", "content": reply})
            return reply

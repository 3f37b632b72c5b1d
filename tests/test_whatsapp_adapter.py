"""
Tests for the WhatsApp channel adapter
======================================

Inbound replies through the chat agent, session binding and outbound alerts.
The chat model is scripted and Kapso is served by ``httpx.MockTransport``.
"""

from __future__ import annotations

import pytest

from apps.murphy.backend.agents.chat import ChatAgent, ConversationMemory
from apps.murphy.backend.agents.tools import AnomalyPolicy
from apps.murphy.backend.src.channels.whatsapp import (
    REGISTRATION_NOTICE,
    WhatsAppAdapter,
    alert_text,
)
from apps.murphy.backend.src.context import PatientContextBuilder
from apps.murphy.backend.src.errors import (
    ConfigurationFailure,
    NotFoundFailure,
    ProviderFailure,
)
from apps.murphy.backend.src.models import (
    Category,
    Channel,
    MeasurementCategory,
    Patient,
    SessionStatus,
)
from apps.murphy.backend.src.services.kapso.client import KapsoClient
from apps.murphy.backend.src.webhooks.events import WhatsAppMessageReceived

SENDER = "573001234567"


def parsed(payload: dict) -> WhatsAppMessageReceived:
    return WhatsAppMessageReceived.model_validate(payload)


# ═══════════════════════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def adapter(chat_client, sent_messages, patients, records_with_regimen, sessions, dedupe, clock):
    return WhatsAppAdapter(
        KapsoClient("kapso-key", "pn_1", transport=sent_messages.transport),
        ChatAgent(chat_client, model="gpt-4o-mini"),
        patients,
        records_with_regimen,
        sessions,
        PatientContextBuilder(patients, records_with_regimen),
        AnomalyPolicy(),
        dedupe,
        clock=clock,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# INBOUND
# ═══════════════════════════════════════════════════════════════════════════════


class TestInboundMessages:
    @pytest.mark.asyncio
    async def test_unregistered_sender_gets_notice(self, adapter, chat_client, sent_messages, whatsapp_event):
        result = await adapter.handle_message(parsed(whatsapp_event(sender="15550001111")))

        assert result == {"status": "unregistered"}
        assert sent_messages.texts_to("15550001111") == [REGISTRATION_NOTICE]
        assert chat_client.requests == []

    @pytest.mark.asyncio
    async def test_registered_sender_gets_reply_and_tools(
        self, adapter, chat_client, sent_messages, sessions, records_with_regimen, whatsapp_event
    ):
        chat_client.turns = [[("save_glucose", {"value": 110})], "Anotado: 110 mg/dL."]

        result = await adapter.handle_message(parsed(whatsapp_event("mi glucosa es 110")))

        assert result == {"status": "replied", "conversation_id": "wa-kconv-1"}
        assert sent_messages.texts_to(SENDER) == ["Anotado: 110 mg/dL."]
        assert records_with_regimen.latest("pat-001", MeasurementCategory.GLUCOSE).value == 110
        session = sessions.get("wa-kconv-1")
        assert session.status == SessionStatus.IN_PROGRESS
        assert session.channel == Channel.MESSAGE
        assert session.patient_id == "pat-001"

        first_request = chat_client.requests[0]
        assert "Ana Gomez" in first_request["messages"][0]["content"]
        assert {tool["function"]["name"] for tool in first_request["tools"]} >= {"save_glucose", "save_insulin"}
        tool_message = chat_client.requests[1]["messages"][-1]
        assert tool_message["role"] == "tool"
        assert '"success": true' in tool_message["content"]

    @pytest.mark.asyncio
    async def test_tool_call_cannot_switch_patient(self, adapter, chat_client, records_with_regimen, whatsapp_event):
        chat_client.turns = [[("save_stress", {"level": 4, "patient_id": "pat-002"})], "Ok."]

        await adapter.handle_message(parsed(whatsapp_event("estres 4")))

        assert records_with_regimen.latest("pat-002", MeasurementCategory.STRESS) is None
        assert records_with_regimen.latest("pat-001", MeasurementCategory.STRESS).level == 4

    @pytest.mark.asyncio
    async def test_redelivered_message_handled_once(self, adapter, chat_client, sent_messages, whatsapp_event):
        chat_client.turns = ["Hola Ana", "Hola otra vez"]
        event = parsed(whatsapp_event("hola", message_id="wamid.dup"))

        first = await adapter.handle_message(event)
        second = await adapter.handle_message(event)

        assert first["status"] == "replied"
        assert second == {"status": "ignored", "reason": "duplicate"}
        assert sent_messages.texts_to(SENDER) == ["Hola Ana"]

    @pytest.mark.asyncio
    async def test_failed_reply_is_processed_on_redelivery(self, adapter, chat_client, sent_messages, whatsapp_event):
        chat_client.turns = ["Hola Ana", "Hola Ana"]
        event = parsed(whatsapp_event("hola", message_id="wamid.retry"))

        sent_messages.status_code = 500
        with pytest.raises(ProviderFailure):
            await adapter.handle_message(event)

        sent_messages.status_code = 200
        result = await adapter.handle_message(event)
        assert result["status"] == "replied"
        assert (await adapter.handle_message(event))["reason"] == "duplicate"

    @pytest.mark.asyncio
    async def test_outbound_echo_ignored(self, adapter, sent_messages, whatsapp_event):
        result = await adapter.handle_message(parsed(whatsapp_event(direction="outbound")))
        assert result == {"status": "ignored", "reason": "not_inbound"}
        assert sent_messages.bodies == []

    @pytest.mark.asyncio
    async def test_empty_text_ignored(self, adapter, whatsapp_event):
        payload = whatsapp_event("   ")
        result = await adapter.handle_message(parsed(payload))
        assert result == {"status": "ignored", "reason": "no_text"}

    @pytest.mark.asyncio
    async def test_follow_up_messages_share_history(self, adapter, chat_client, whatsapp_event):
        chat_client.turns = ["Hola Ana", "Perfecto"]
        await adapter.handle_message(parsed(whatsapp_event("hola", message_id="wamid.a")))
        await adapter.handle_message(parsed(whatsapp_event("gracias", message_id="wamid.b")))

        history = chat_client.requests[1]["messages"]
        assert [m["content"] for m in history[1:]] == ["hola", "Hola Ana", "gracias"]

    @pytest.mark.asyncio
    async def test_chat_model_missing_is_configuration_failure(
        self, patients, records_with_regimen, sessions, dedupe, sent_messages, clock, whatsapp_event
    ):
        adapter = WhatsAppAdapter(
            KapsoClient("kapso-key", "pn_1", transport=sent_messages.transport),
            ChatAgent(None, model="gpt-4o-mini"),
            patients,
            records_with_regimen,
            sessions,
            PatientContextBuilder(patients, records_with_regimen),
            AnomalyPolicy(),
            dedupe,
            clock=clock,
        )
        with pytest.raises(ConfigurationFailure):
            await adapter.handle_message(parsed(whatsapp_event()))


# ═══════════════════════════════════════════════════════════════════════════════
# OUTBOUND ALERTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestSendAlert:
    @pytest.mark.asyncio
    async def test_alert_opens_session_and_reply_binds_to_it(
        self, adapter, chat_client, sent_messages, sessions, patient, whatsapp_event
    ):
        session = await adapter.send_alert("pat-001", Category.GLUCOMETRY, schedule_id="sched-1")

        assert session.status == SessionStatus.IN_PROGRESS
        assert session.alert_type == Category.GLUCOMETRY
        assert session.schedule_id == "sched-1"
        greeting = alert_text(Category.GLUCOMETRY, patient)
        assert greeting.startswith("Hi Ana!")
        assert sent_messages.texts_to("+57 300 123 4567") == [greeting]

        chat_client.turns = ["Gracias"]
        result = await adapter.handle_message(parsed(whatsapp_event("120")))
        assert result["conversation_id"] == session.conversation_id
        history = chat_client.requests[0]["messages"]
        assert history[1] == {"role": "assistant", "content": greeting}

    @pytest.mark.asyncio
    async def test_new_alert_supersedes_open_thread(self, adapter, sessions):
        first = await adapter.send_alert("pat-001", Category.INSULIN)
        second = await adapter.send_alert("pat-001", Category.WELLNESS)

        old = sessions.get(first.conversation_id)
        assert old.status == SessionStatus.COMPLETED
        assert old.outcome == "superseded"
        active = sessions.find_active_by_phone("+57 300 123 4567", Channel.MESSAGE)
        assert active.conversation_id == second.conversation_id

    @pytest.mark.asyncio
    async def test_superseded_thread_history_is_dropped(self, adapter):
        first = await adapter.send_alert("pat-001", Category.INSULIN)
        await adapter.send_alert("pat-001", Category.WELLNESS)
        assert adapter.chat_agent.memory.get(first.conversation_id) == []
        assert len(adapter.chat_agent.memory) == 1

    @pytest.mark.asyncio
    async def test_unknown_patient(self, adapter, sent_messages):
        with pytest.raises(NotFoundFailure):
            await adapter.send_alert("nobody", Category.GENERAL)
        assert sent_messages.bodies == []

    @pytest.mark.asyncio
    async def test_patient_without_phone(self, adapter, patients):
        patients.add(Patient(patient_id="pat-003", full_name="Sin Telefono"))
        with pytest.raises(ProviderFailure):
            await adapter.send_alert("pat-003", Category.GENERAL)

    @pytest.mark.asyncio
    async def test_provider_rejection_opens_no_session(self, adapter, sent_messages, sessions):
        sent_messages.status_code = 500
        with pytest.raises(ProviderFailure) as exc_info:
            await adapter.send_alert("pat-001", Category.GENERAL)
        assert exc_info.value.http_status == 500
        assert sessions.find_active_by_phone("+57 300 123 4567", Channel.MESSAGE) is None

    def test_unnamed_patient_greeting(self):
        text = alert_text(Category.GENERAL, Patient(patient_id="x"))
        assert text.startswith("Hi there!")


# ═══════════════════════════════════════════════════════════════════════════════
# CHAT MEMORY
# ═══════════════════════════════════════════════════════════════════════════════


class TestConversationMemory:
    def test_least_recently_used_conversation_is_evicted(self):
        memory = ConversationMemory(max_conversations=2)
        memory.append("a", {"role": "user", "content": "1"})
        memory.append("b", {"role": "user", "content": "2"})
        memory.get("a")
        memory.append("c", {"role": "user", "content": "3"})

        assert len(memory) == 2
        assert memory.get("b") == []
        assert memory.get("a") == [{"role": "user", "content": "1"}]

    def test_history_per_conversation_is_bounded(self):
        memory = ConversationMemory(max_messages=3)
        for index in range(5):
            memory.append("a", {"role": "user", "content": str(index)})
        assert [m["content"] for m in memory.get("a")] == ["2", "3", "4"]

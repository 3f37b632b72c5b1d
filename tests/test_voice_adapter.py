"""
Tests for the outbound call adapter and ElevenLabs client
=========================================================

Provider HTTP is served by ``httpx.MockTransport``; no network access.
"""

from __future__ import annotations

import json

import httpx
import pytest

from apps.murphy.backend.src.channels.voice import OutboundCallAdapter
from apps.murphy.backend.src.context import PatientContextBuilder
from apps.murphy.backend.src.errors import (
    ConfigurationFailure,
    NotFoundFailure,
    ProviderFailure,
)
from apps.murphy.backend.src.models import Category, Channel, Patient, SessionStatus
from apps.murphy.backend.src.services.elevenlabs.client import ElevenLabsClient


class RecordingTransport:
    """Collects outbound requests and answers with a canned response."""

    def __init__(self, status_code: int = 200, payload: dict | None = None):
        self.status_code = status_code
        self.payload = payload if payload is not None else {
            "success": True,
            "message": "ok",
            "conversation_id": "conv_abc",
            "callSid": "CA123",
        }
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.payload)

    @property
    def last_body(self) -> dict:
        return json.loads(self.requests[-1].content)


def make_client(handler, **overrides) -> ElevenLabsClient:
    kwargs = {
        "api_key": "xi-test",
        "agent_id": "agent_1",
        "phone_number_id": "phnum_1",
        "transport": httpx.MockTransport(handler),
    }
    kwargs.update(overrides)
    return ElevenLabsClient(**kwargs)


# ═══════════════════════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def builder(patients, records_with_regimen):
    return PatientContextBuilder(patients, records_with_regimen)


@pytest.fixture
def adapter(transport, builder, sessions, clock):
    return OutboundCallAdapter(make_client(transport), builder, sessions, clock=clock)


# ═══════════════════════════════════════════════════════════════════════════════
# PLACE CALL
# ═══════════════════════════════════════════════════════════════════════════════


class TestPlaceCall:
    @pytest.mark.asyncio
    async def test_accepted_call_opens_initiated_session(self, adapter, sessions, transport, now):
        session = await adapter.place_call("pat-001", alert_type=Category.GLUCOMETRY)

        assert session.conversation_id == "conv_abc"
        stored = sessions.get("conv_abc")
        assert stored.status == SessionStatus.INITIATED
        assert stored.channel == Channel.CALL
        assert stored.patient_id == "pat-001"
        assert stored.phone_number == "+57 300 123 4567"
        assert stored.alert_type == Category.GLUCOMETRY
        assert stored.started_at == now

    @pytest.mark.asyncio
    async def test_request_carries_agent_and_dynamic_variables(self, adapter, transport):
        await adapter.place_call("pat-001", alert_type=Category.INSULIN, is_reminder=True)

        request = transport.requests[-1]
        assert request.url.path == "/v1/convai/twilio/outbound-call"
        assert request.headers["xi-api-key"] == "xi-test"
        body = transport.last_body
        assert body["agent_id"] == "agent_1"
        assert body["agent_phone_number_id"] == "phnum_1"
        assert body["to_number"] == "+57 300 123 4567"
        variables = body["conversation_initiation_client_data"]["dynamic_variables"]
        assert variables["patient_name"] == "Ana Gomez"
        assert variables["alert_type"] == "insulin"
        assert variables["is_reminder"] == "true"
        assert variables["insulin_rapid_schedule"].startswith("6 units, 3 times a day")
        assert "phone_number" not in variables

    @pytest.mark.asyncio
    async def test_default_alert_type_is_general(self, adapter, transport):
        await adapter.place_call("pat-001")
        variables = transport.last_body["conversation_initiation_client_data"]["dynamic_variables"]
        assert variables["alert_type"] == "general"
        assert variables["is_reminder"] == "false"

    @pytest.mark.asyncio
    async def test_explicit_number_overrides_profile(self, adapter, transport, sessions):
        session = await adapter.place_call("pat-001", to_number="+1 555 0100")
        assert transport.last_body["to_number"] == "+1 555 0100"
        assert sessions.get(session.conversation_id).phone_number == "+1 555 0100"

    @pytest.mark.asyncio
    async def test_missing_credentials_fail_before_lookup(self, builder, sessions, transport, clock):
        adapter = OutboundCallAdapter(
            make_client(transport, api_key=None), builder, sessions, clock=clock
        )
        # An unknown patient would otherwise raise NotFoundFailure
        with pytest.raises(ConfigurationFailure):
            await adapter.place_call("nobody")
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_unknown_patient(self, adapter, transport):
        with pytest.raises(NotFoundFailure):
            await adapter.place_call("nobody")
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_no_number_anywhere(self, adapter, patients, transport):
        patients.add(Patient(patient_id="pat-003", full_name="Sin Telefono"))
        with pytest.raises(ProviderFailure):
            await adapter.place_call("pat-003")
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_retry_metadata_recorded(self, adapter, sessions):
        session = await adapter.place_call("pat-001", schedule_id="sched-1", retry_count=2)
        stored = sessions.get(session.conversation_id)
        assert stored.schedule_id == "sched-1"
        assert stored.retry_count == 2


# ═══════════════════════════════════════════════════════════════════════════════
# PROVIDER ERRORS
# ═══════════════════════════════════════════════════════════════════════════════


class TestProviderErrors:
    @pytest.mark.asyncio
    async def test_non_2xx_is_provider_failure_with_status(self):
        client = make_client(RecordingTransport(422, {"detail": "bad number"}))
        with pytest.raises(ProviderFailure) as exc_info:
            await client.initiate_outbound_call("+1 555 0100", {})
        assert exc_info.value.http_status == 422
        assert "bad number" in exc_info.value.body
        assert exc_info.value.provider == "elevenlabs"

    @pytest.mark.asyncio
    async def test_declined_in_body(self):
        client = make_client(RecordingTransport(200, {"success": False, "message": "no credits"}))
        with pytest.raises(ProviderFailure, match="no credits"):
            await client.initiate_outbound_call("+1 555 0100", {})

    @pytest.mark.asyncio
    async def test_missing_conversation_id(self):
        client = make_client(RecordingTransport(200, {"success": True}))
        with pytest.raises(ProviderFailure):
            await client.initiate_outbound_call("+1 555 0100", {})

    @pytest.mark.asyncio
    async def test_non_object_body(self):
        def listing(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[{"conversation_id": "conv_abc"}])

        with pytest.raises(ProviderFailure, match="unexpected JSON shape"):
            await make_client(listing).initiate_outbound_call("+1 555 0100", {})

    @pytest.mark.asyncio
    async def test_timeout(self):
        def slow(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ProviderFailure, match="timed out"):
            await make_client(slow).initiate_outbound_call("+1 555 0100", {})

    @pytest.mark.asyncio
    async def test_rejected_call_leaves_no_session(self, builder, sessions, clock):
        adapter = OutboundCallAdapter(
            make_client(RecordingTransport(500, {"detail": "down"})), builder, sessions, clock=clock
        )
        with pytest.raises(ProviderFailure):
            await adapter.place_call("pat-001")
        assert sessions.find_active_by_phone("+57 300 123 4567", Channel.CALL) is None

import json
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace

import httpx
import pytest

# Disable telemetry for tests
os.environ["DISABLE_CLOUD_TELEMETRY"] = "true"

# Keep tests off real infrastructure even when a developer .env is present
os.environ["REDIS_HOST"] = ""
os.environ.setdefault("LOG_LEVEL", "WARNING")

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from apps.murphy.backend.src.models import InsulinRegimen, InsulinType, Patient  # noqa: E402
from apps.murphy.backend.src.stores.memory import (  # noqa: E402
    InMemoryHealthRecordStore,
    InMemoryIdempotencyGuard,
    InMemoryPatientDirectory,
    InMemoryScheduleRepository,
    InMemorySessionRepository,
)

# 2025-03-10 15:00 UTC is 10:00 in the default UTC-5 patient offset
NOW = datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ═══════════════════════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def patient():
    return Patient(
        patient_id="pat-001",
        full_name="Ana Gomez",
        age=42,
        diabetes_type="Type 1",
        diagnosis_year=2012,
        phone_number="+57 300 123 4567",
        utc_offset_minutes=-300,
        coadmin_ids=["coadmin-9"],
    )


@pytest.fixture
def patients(patient):
    directory = InMemoryPatientDirectory([patient])
    directory.add(
        Patient(
            patient_id="pat-002",
            full_name="Luis Perez",
            phone_number="+57 301 555 0000",
        )
    )
    return directory


@pytest.fixture
def records():
    return InMemoryHealthRecordStore()


@pytest.fixture
def records_with_regimen(records, patient):
    records.set_regimen(
        InsulinRegimen(
            patient_id=patient.patient_id,
            insulin_type=InsulinType.RAPID,
            units_per_dose=6,
            times_per_day=3,
        )
    )
    return records


@pytest.fixture
def schedules():
    return InMemoryScheduleRepository()


@pytest.fixture
def sessions():
    return InMemorySessionRepository()


@pytest.fixture
def dedupe():
    return InMemoryIdempotencyGuard()


# ═══════════════════════════════════════════════════════════════════════════════
# PROVIDER FAKES
# ═══════════════════════════════════════════════════════════════════════════════


class ScriptedChatClient:
    """
    Stand-in for ``AsyncOpenAI`` that replays queued assistant turns.

    Each queued item is either a reply string or a list of
    ``(tool_name, arguments_dict)`` tool calls.
    """

    def __init__(self, *turns):
        self.turns = list(turns)
        self.requests = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **kwargs):
        self.requests.append(kwargs)
        turn = self.turns.pop(0) if self.turns else "Listo."
        if isinstance(turn, str):
            message = SimpleNamespace(content=turn, tool_calls=None)
        else:
            message = SimpleNamespace(
                content=None,
                tool_calls=[
                    SimpleNamespace(
                        id=f"call_{index}",
                        function=SimpleNamespace(name=name, arguments=json.dumps(arguments)),
                    )
                    for index, (name, arguments) in enumerate(turn)
                ],
            )
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def make_whatsapp_event(
    text: str = "mi glucosa es 110",
    *,
    sender: str = "573001234567",
    message_id: str = "wamid.1",
    conversation_id: str = "kconv-1",
    direction: str = "inbound",
) -> dict:
    """A ``whatsapp.message.received`` body as Kapso delivers it."""
    return {
        "message": {
            "id": message_id,
            "timestamp": "1741618800",
            "type": "text",
            "text": {"body": text},
            "from": sender,
            "kapso": {
                "direction": direction,
                "status": "received",
                "processing_status": "pending",
                "origin": "cloud_api",
                "has_media": False,
                "content": text,
            },
        },
        "conversation": {
            "id": conversation_id,
            "phone_number": f"+{sender}",
            "status": "active",
            "last_active_at": "2025-03-10T15:00:00Z",
            "created_at": "2025-03-10T14:00:00Z",
            "updated_at": "2025-03-10T15:00:00Z",
            "metadata": {},
            "phone_number_id": "pn_1",
            "kapso": {"messages_count": 1},
        },
        "is_new_conversation": False,
        "phone_number_id": "pn_1",
    }


@pytest.fixture
def chat_client():
    return ScriptedChatClient()


class SentMessages:
    """Kapso transport that records every outbound WhatsApp body."""

    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.bodies = []
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.bodies.append(json.loads(request.content))
        return httpx.Response(self.status_code, json={"messages": [{"id": f"wamid.out{len(self.bodies)}"}]})

    def texts_to(self, to: str):
        return [body["text"]["body"] for body in self.bodies if body["to"] == to]


@pytest.fixture
def whatsapp_event():
    return make_whatsapp_event


@pytest.fixture
def sent_messages():
    return SentMessages()

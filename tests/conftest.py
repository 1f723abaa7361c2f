"""Shared test fixtures and helpers."""

import json
from datetime import datetime, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

import pytest

from receptionist.clients.datastore import InMemoryDatastore
from receptionist.clients.gateway import NotificationDeliveryError
from receptionist.conversation.orchestrator import TurnOrchestrator
from receptionist.schemas.business_schema import BusinessContext, BusinessProfile
from receptionist.schemas.memory_schema import ConversationMemory, Speaker, TranscriptEntry

BUSINESS_ID = "biz-1"

# Sunday 2025-06-01, noon in New York.
FIXED_NOW = datetime(2025, 6, 1, 16, 0, tzinfo=timezone.utc)

WEEKDAY_HOURS = {"open": "09:00", "close": "17:00"}


def fixed_clock() -> datetime:
    return FIXED_NOW


def make_business_row(**overrides) -> dict:
    """Business open Mon-Fri 09:00-17:00, 30-minute slots, one booking per slot."""
    row = {
        "id": BUSINESS_ID,
        "name": "Bright Smile Dental",
        "business_type": "dental",
        "address": "12 Main Street, Springfield",
        "phone": "(555) 010-2000",
        "email": "hello@brightsmile.example",
        "timezone": "America/New_York",
        "operating_hours": {
            day: dict(WEEKDAY_HOURS)
            for day in ("monday", "tuesday", "wednesday", "thursday", "friday")
        },
        "appointment_slot_duration": 30,
        "max_appointments_per_slot": 1,
        "closing_message": "Thanks for calling Bright Smile Dental. Goodbye!",
        "notification_email": "owner@brightsmile.example",
        "notification_sms": "+15550102001",
        "notification_settings": {},
    }
    row.update(overrides)
    return row


def make_reservation_row(date: str, time: str, **overrides) -> dict:
    row = {
        "business_id": BUSINESS_ID,
        "customer_name": "Existing Customer",
        "customer_phone": "5550000000",
        "appointment_date": date,
        "appointment_time": time,
        "duration_minutes": 30,
        "party_size": 1,
        "status": "scheduled",
    }
    row.update(overrides)
    return row


def make_context(
    business_row: Optional[dict] = None,
    reservations: Optional[list[dict]] = None,
    services: Optional[list] = None,
    knowledge_base: Optional[list] = None,
    now: datetime = FIXED_NOW,
    confidence_threshold: float = 0.8,
) -> BusinessContext:
    """Build a BusinessContext directly, without going through the loader."""
    business = BusinessProfile.model_validate(business_row or make_business_row())
    return BusinessContext(
        business=business,
        knowledge_base=knowledge_base or [],
        services=services or [],
        upcoming_reservations=reservations or [],
        local_now=now.astimezone(ZoneInfo(business.timezone or "America/New_York")),
        slot_minutes=business.appointment_slot_duration or 30,
        max_per_slot=business.max_appointments_per_slot or 1,
        confidence_threshold=confidence_threshold,
        closing_message=business.closing_message or "Goodbye!",
    )


def make_memory(
    transcript: Optional[list[tuple[str, str]]] = None,
    **fields,
) -> ConversationMemory:
    """Create a memory from (speaker, text) tuples plus any memory fields."""
    entries = [
        TranscriptEntry(speaker=Speaker.AGENT if spk == "agent" else Speaker.CALLER, text=text)
        for spk, text in (transcript or [])
    ]
    fields.setdefault("business_id", BUSINESS_ID)
    return ConversationMemory(transcript=entries, **fields)


def make_state(transcript: Optional[list[tuple[str, str]]] = None, **fields) -> str:
    return make_memory(transcript, **fields).model_dump_json()


def classification_json(**fields) -> str:
    return json.dumps(fields)


class ScriptedLLM:
    """LLM double that replays queued responses and records every call.

    Queued items that are exceptions are raised instead of returned.
    """

    DEFAULT_JSON = '{"intent": "other", "confidence": 0.9}'
    DEFAULT_TEXT = "Happy to help. What else can I do for you?"

    def __init__(self):
        self.json_replies: list[Union[str, Exception]] = []
        self.text_replies: list[Union[str, Exception]] = []
        self.json_calls: list[list[dict]] = []
        self.text_calls: list[list[dict]] = []

    def queue_json(self, *replies) -> None:
        self.json_replies.extend(replies)

    def queue_text(self, *replies) -> None:
        self.text_replies.extend(replies)

    async def complete_json(self, messages: list[dict]) -> str:
        self.json_calls.append(messages)
        return self._next(self.json_replies, self.DEFAULT_JSON)

    async def complete_text(self, messages: list[dict]) -> str:
        self.text_calls.append(messages)
        return self._next(self.text_replies, self.DEFAULT_TEXT)

    @staticmethod
    def _next(queue: list, default: str) -> str:
        reply = queue.pop(0) if queue else default
        if isinstance(reply, Exception):
            raise reply
        return reply


class RecordingGateway:
    """Notification gateway double that records deliveries."""

    def __init__(self, fail_email: bool = False, fail_sms: bool = False):
        self.fail_email = fail_email
        self.fail_sms = fail_sms
        self.emails: list[tuple[str, str, str]] = []
        self.sms: list[tuple[str, str]] = []

    async def send_email(self, to: str, subject: str, body: str) -> None:
        if self.fail_email:
            raise NotificationDeliveryError("email gateway down")
        self.emails.append((to, subject, body))

    async def send_sms(self, to: str, message: str) -> None:
        if self.fail_sms:
            raise NotificationDeliveryError("sms gateway down")
        self.sms.append((to, message))


@pytest.fixture
def datastore():
    store = InMemoryDatastore()
    store.add_business(make_business_row())
    return store


@pytest.fixture
def llm():
    return ScriptedLLM()


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def orchestrator(datastore, llm, gateway):
    return TurnOrchestrator(datastore=datastore, llm=llm, gateway=gateway, clock=fixed_clock)


@pytest.fixture
def context():
    return make_context()

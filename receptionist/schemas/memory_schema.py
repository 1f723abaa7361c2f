"""Conversation memory carried by the telephony layer between turns."""

from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from receptionist.utils import is_valid_phone, normalize_date, normalize_phone, normalize_time

MEMORY_VERSION = 1

_NULL_STRINGS = {"", "null", "none", "n/a", "unknown"}


class Speaker(str, Enum):
    CALLER = "caller"
    AGENT = "agent"


class TranscriptEntry(BaseModel):
    """A single utterance in the running call transcript."""

    speaker: Speaker
    text: str


class BookingEntities(BaseModel):
    """Booking-relevant fields, each independently optional.

    Validators are lenient: values that cannot be coerced into the
    expected shape become None instead of raising.
    """

    name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("name", "customer_name")
    )
    phone: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("phone", "customer_phone")
    )
    email: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("email", "customer_email")
    )
    requested_date: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("requested_date", "date")
    )
    requested_time: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("requested_time", "time")
    )
    party_size: Optional[int] = None

    @field_validator("name", "email", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Optional[str]:
        if value is None or not isinstance(value, str):
            return None
        value = value.strip()
        return None if value.lower() in _NULL_STRINGS else value

    @field_validator("phone", mode="before")
    @classmethod
    def _clean_phone(cls, value: Any) -> Optional[str]:
        if isinstance(value, int):
            value = str(value)
        if not isinstance(value, str):
            return None
        cleaned = normalize_phone(value)
        return cleaned if cleaned.lstrip("+") else None

    @field_validator("requested_date", mode="before")
    @classmethod
    def _clean_date(cls, value: Any) -> Optional[str]:
        return normalize_date(value) if isinstance(value, str) else None

    @field_validator("requested_time", mode="before")
    @classmethod
    def _clean_time(cls, value: Any) -> Optional[str]:
        return normalize_time(value) if isinstance(value, str) else None

    @field_validator("party_size", mode="before")
    @classmethod
    def _clean_party_size(cls, value: Any) -> Optional[int]:
        if value is None or isinstance(value, bool):
            return None
        try:
            size = int(float(value))
        except (TypeError, ValueError):
            return None
        return size if size > 0 else None


class RememberedEntities(BookingEntities):
    """Entities persisted across turns until overwritten by a newer extraction."""

    def missing_booking_fields(self) -> list[str]:
        """Return the required booking fields that are still unknown, in asking order."""
        missing = []
        if not self.name:
            missing.append("name")
        if not is_valid_phone(self.phone):
            missing.append("phone")
        if not self.requested_date:
            missing.append("date")
        if not self.requested_time:
            missing.append("time")
        return missing


class ConversationMemory(BaseModel):
    """The opaque per-call state round-tripped through the caller."""

    version: int = MEMORY_VERSION
    business_id: Optional[str] = None
    turn_count: int = 0
    transcript: list[TranscriptEntry] = Field(default_factory=list)
    remembered_entities: RememberedEntities = Field(default_factory=RememberedEntities)
    pending_alternatives: list[str] = Field(default_factory=list)
    awaiting_phone_confirmation: bool = False
    phone_confirmed: bool = False
    message_recorded: bool = False

    def append_turn(self, speaker: Speaker, text: str, cap: int) -> None:
        """Append an utterance, dropping the oldest entries beyond ``cap``."""
        self.transcript.append(TranscriptEntry(speaker=speaker, text=text))
        if len(self.transcript) > cap:
            del self.transcript[:-cap]

    def caller_texts(self) -> list[str]:
        return [e.text for e in self.transcript if e.speaker == Speaker.CALLER]

    def agent_texts(self) -> list[str]:
        return [e.text for e in self.transcript if e.speaker == Speaker.AGENT]

    def last_agent_text(self) -> Optional[str]:
        for entry in reversed(self.transcript):
            if entry.speaker == Speaker.AGENT:
                return entry.text
        return None

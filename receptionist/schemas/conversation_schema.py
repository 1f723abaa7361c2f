"""Per-turn classification and the inbound/outbound turn payloads."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from receptionist.schemas.memory_schema import BookingEntities


class Intent(str, Enum):
    BOOKING = "booking"
    QUESTION = "question"
    OTHER = "other"
    GOODBYE = "goodbye"
    CONFIRMATION = "confirmation"


class TurnClassification(BookingEntities):
    """Classifier output for one caller utterance.

    Entity fields may hold partial values (e.g. a seven-digit phone);
    the entity merger decides what is accepted into memory.
    """

    intent: Intent = Intent.OTHER
    confidence: float = 0.5
    notes: Optional[str] = None
    needs_message: bool = False

    @field_validator("intent", mode="before")
    @classmethod
    def _coerce_intent(cls, value: Any) -> Intent:
        if isinstance(value, Intent):
            return value
        try:
            return Intent(str(value).strip().lower())
        except ValueError:
            return Intent.OTHER

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value: Any) -> float:
        if value is None or isinstance(value, bool):
            return 0.5
        try:
            confidence = float(value)
        except (TypeError, ValueError):
            return 0.5
        return min(max(confidence, 0.0), 1.0)

    @field_validator("notes", mode="before")
    @classmethod
    def _coerce_notes(cls, value: Any) -> Optional[str]:
        if not isinstance(value, str) or value.strip().lower() in ("", "null", "none"):
            return None
        return value.strip()

    @field_validator("needs_message", mode="before")
    @classmethod
    def _coerce_needs_message(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in ("true", "yes", "1")
        return bool(value)

    def entities(self) -> BookingEntities:
        return BookingEntities(
            name=self.name,
            phone=self.phone,
            email=self.email,
            requested_date=self.requested_date,
            requested_time=self.requested_time,
            party_size=self.party_size,
        )


class TurnRequest(BaseModel):
    """Inbound payload from the telephony layer."""

    utterance_text: Optional[str] = None
    client_state: Optional[str] = None
    business_id: Optional[str] = None
    call_id: Optional[str] = None


class TurnResponse(BaseModel):
    """Outbound payload returned to the telephony layer."""

    reply_text: str
    client_state: str
    has_appointment: bool = False
    needs_message: bool = False
    suggested_alternatives: Optional[list[str]] = Field(default=None)

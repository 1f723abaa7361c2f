"""Business profile and the per-turn business context."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from receptionist.utils import normalize_time

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def _without_nulls(data: Any) -> Any:
    """Let stored nulls fall back to field defaults."""
    if isinstance(data, dict):
        return {k: v for k, v in data.items() if v is not None}
    return data


class DayHours(BaseModel):
    """Opening window for one weekday. Times are HH:MM:SS."""

    open: Optional[str] = None
    close: Optional[str] = None
    closed: bool = False

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        return _without_nulls(data)

    @field_validator("open", "close", mode="before")
    @classmethod
    def _clean_time(cls, value: Any) -> Optional[str]:
        return normalize_time(value) if isinstance(value, str) else None

    @property
    def is_closed(self) -> bool:
        return self.closed or not self.open or not self.close

    def contains(self, clock_time: str) -> bool:
        """True if ``clock_time`` (HH:MM:SS) falls inside ``[open, close)``."""
        if self.is_closed:
            return False
        return self.open <= clock_time < self.close


class NotificationSettings(BaseModel):
    """Per-business notification toggles and routing."""

    ai_confidence_threshold: Optional[float] = None
    notify_on_bookings: bool = False
    notify_on_service_booked: bool = False
    notify_on_booking_failed: bool = True
    notify_on_low_confidence: bool = True
    notify_on_call_backs: bool = True
    booking_party_size_threshold: Optional[int] = None
    notification_methods: dict[str, list[str]] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        return _without_nulls(data)


class BusinessProfile(BaseModel):
    """Tenant row as stored in the ``businesses`` table."""

    id: str
    name: str
    business_type: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    timezone: Optional[str] = None
    operating_hours: dict[str, DayHours] = Field(default_factory=dict)
    appointment_slot_duration: Optional[int] = None
    max_appointments_per_slot: Optional[int] = None
    closing_message: Optional[str] = None
    ai_instructions: Optional[str] = None
    notification_email: Optional[str] = None
    notification_sms: Optional[str] = None
    notification_settings: NotificationSettings = Field(default_factory=NotificationSettings)

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @field_validator("operating_hours", mode="before")
    @classmethod
    def _lowercase_days(cls, value: Any) -> dict:
        if not isinstance(value, dict):
            return {}
        return {str(day).lower(): hours for day, hours in value.items() if isinstance(hours, dict)}

    @field_validator("notification_settings", mode="before")
    @classmethod
    def _default_settings(cls, value: Any) -> Any:
        return value if value is not None else {}

    def hours_for(self, weekday: str) -> DayHours:
        """Return the window for a weekday name; unconfigured days are closed."""
        return self.operating_hours.get(weekday.lower(), DayHours(closed=True))


class KnowledgeEntry(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    category: Optional[str] = None


class Service(BaseModel):
    name: str
    description: Optional[str] = None
    price: Optional[float] = None
    duration_minutes: Optional[int] = None
    quote_needed: bool = False
    active: bool = True

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        return _without_nulls(data)


class BusinessContext(BaseModel):
    """Everything the turn needs to know about the business, loaded once per turn."""

    business: BusinessProfile
    knowledge_base: list[KnowledgeEntry] = Field(default_factory=list)
    services: list[Service] = Field(default_factory=list)
    upcoming_reservations: list[dict[str, Any]] = Field(default_factory=list)
    local_now: datetime
    slot_minutes: int
    max_per_slot: int
    confidence_threshold: float
    closing_message: str

    @property
    def today(self) -> str:
        return self.local_now.date().isoformat()

    @property
    def weekday(self) -> str:
        return WEEKDAYS[self.local_now.weekday()]

    @property
    def is_open_now(self) -> bool:
        hours = self.business.hours_for(self.weekday)
        return hours.contains(self.local_now.strftime("%H:%M:%S"))

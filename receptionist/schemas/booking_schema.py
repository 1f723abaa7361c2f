"""Booking request, reservation and availability result schemas."""

from typing import Any, Optional, Union

from pydantic import BaseModel, Field


class BookingRequest(BaseModel):
    """Merged booking details, ready for an availability check and commit."""

    name: str
    phone: str
    date: str
    time: str
    email: Optional[str] = None
    party_size: int = 1
    notes: Optional[str] = None


class Reservation(BaseModel):
    """Row as written to the ``appointments`` table."""

    id: Optional[Union[int, str]] = None
    business_id: str
    customer_name: str
    customer_phone: str
    appointment_date: str
    appointment_time: str
    duration_minutes: int
    party_size: int = 1
    notes: Optional[str] = None
    status: str = "scheduled"

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Reservation":
        return cls.model_validate(row)


class AvailabilityResult(BaseModel):
    """Phase-one slot check. ``closed_reason`` is set when the time is outside hours."""

    available: bool
    count: int = 0
    capacity: int
    closed_reason: Optional[str] = None

    @property
    def closed(self) -> bool:
        return self.closed_reason is not None


class CommitResult(BaseModel):
    """Outcome of a commit attempt.

    ``race_lost`` is set when the just-in-time re-check found the slot full;
    ``error`` is set when the datastore rejected the write.
    """

    success: bool
    reservation: Optional[Reservation] = None
    race_lost: bool = False
    error: Optional[str] = None
    alternatives: list[str] = Field(default_factory=list)

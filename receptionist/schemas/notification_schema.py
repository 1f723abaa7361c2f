"""Notification categories and the follow-up message record."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class NotificationCategory(str, Enum):
    BOOKING = "booking"
    SERVICE_BOOKED = "service_booked"
    BOOKING_FAILED = "booking_failed"
    LOW_CONFIDENCE = "low_confidence"
    CALL_BACK = "call_back"


class CustomerMessage(BaseModel):
    """Row as written to the ``customer_messages`` table. Write-once."""

    business_id: str
    caller_number: str = "unknown"
    caller_name: Optional[str] = None
    caller_email: Optional[str] = None
    message: str
    request_type: str = "other"
    original_request: Optional[str] = None
    notification_category: NotificationCategory
    status: str = "pending"

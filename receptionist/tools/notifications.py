"""
Policy-driven notification fan-out to the business owner.

Every category can be toggled per business. Booking emails and texts are
always sent; the follow-up record for a booking is additionally gated by
the booking toggles and the party-size threshold. Each delivery channel
is attempted independently and no failure reaches the caller.
"""

from dataclasses import dataclass
from typing import Optional

from receptionist.clients.datastore import Datastore, DatastoreError
from receptionist.clients.gateway import NotificationDeliveryError, NotificationGateway
from receptionist.logging_context import get_call_logger
from receptionist.schemas.booking_schema import Reservation
from receptionist.schemas.business_schema import BusinessProfile, NotificationSettings
from receptionist.schemas.notification_schema import CustomerMessage, NotificationCategory
from receptionist.utils import format_date, format_time

logger = get_call_logger(__name__)

DEFAULT_CHANNELS = ["email", "sms"]

SERVICE_BOOKING_WORDS = ("service", "appointment")


@dataclass
class NotificationPayload:
    subject: str
    body: str
    sms_text: str


def is_enabled(settings: NotificationSettings, category: NotificationCategory) -> bool:
    toggles = {
        NotificationCategory.BOOKING: settings.notify_on_bookings,
        NotificationCategory.SERVICE_BOOKED: settings.notify_on_service_booked,
        NotificationCategory.BOOKING_FAILED: settings.notify_on_booking_failed,
        NotificationCategory.LOW_CONFIDENCE: settings.notify_on_low_confidence,
        NotificationCategory.CALL_BACK: settings.notify_on_call_backs,
    }
    return toggles[category]


def booking_record_category(
    settings: NotificationSettings, party_size: int, conversation_text: str
) -> Optional[NotificationCategory]:
    """Category of the follow-up record for a booking, or None if none is due."""
    if not settings.notify_on_bookings:
        return None
    category = None
    threshold = settings.booking_party_size_threshold
    if not threshold or party_size >= threshold:
        category = NotificationCategory.BOOKING
    lowered = conversation_text.lower()
    if settings.notify_on_service_booked and any(w in lowered for w in SERVICE_BOOKING_WORDS):
        category = NotificationCategory.SERVICE_BOOKED
    return category


def booking_payload(reservation: Reservation) -> NotificationPayload:
    date = format_date(reservation.appointment_date)
    time = format_time(reservation.appointment_time)
    body = (
        "New appointment booked:\n\n"
        f"Customer: {reservation.customer_name}\n"
        f"Phone: {reservation.customer_phone}\n"
        f"Date: {date}\n"
        f"Time: {time}\n"
        f"Party Size: {reservation.party_size}\n"
        f"Notes: {reservation.notes or 'None'}\n\n"
        "This is an automated notification from your AI phone agent."
    )
    return NotificationPayload(
        subject=f"New Appointment: {reservation.customer_name} - {date} at {time}",
        body=body,
        sms_text=f"New appointment: {reservation.customer_name} on {date} at {time}",
    )


def message_payload(business: BusinessProfile, message: CustomerMessage) -> NotificationPayload:
    body = (
        "A customer called and left a message that requires your attention:\n\n"
        f"Customer Name: {message.caller_name or 'Not provided'}\n"
        f"Phone: {message.caller_number}\n"
        f"Email: {message.caller_email or 'Not provided'}\n"
        f"Request Type: {message.request_type}\n"
        f"Message: {message.message}\n\n"
        "Please call them back as soon as possible.\n\n"
        "This is an automated notification from your AI phone agent."
    )
    return NotificationPayload(
        subject=f"Customer Message Requires Follow-up - {business.name}",
        body=body,
        sms_text=f"New message from {message.caller_name or 'customer'}. Check email for details.",
    )


class NotificationDispatcher:
    """Writes follow-up records and delivers owner notifications."""

    def __init__(self, gateway: NotificationGateway, datastore: Datastore):
        self._gateway = gateway
        self._datastore = datastore

    async def notify(
        self,
        business: BusinessProfile,
        category: NotificationCategory,
        payload: NotificationPayload,
    ) -> list[str]:
        """Deliver ``payload`` on every channel configured for ``category``.

        Returns the channels that succeeded.
        """
        methods = business.notification_settings.notification_methods.get(category.value)
        channels = methods or DEFAULT_CHANNELS
        delivered = []
        if "email" in channels and business.notification_email:
            if await self._attempt(
                "email", self._gateway.send_email(
                    business.notification_email, payload.subject, payload.body
                )
            ):
                delivered.append("email")
        if "sms" in channels and business.notification_sms:
            if await self._attempt(
                "sms", self._gateway.send_sms(business.notification_sms, payload.sms_text)
            ):
                delivered.append("sms")
        return delivered

    async def booking_made(
        self,
        business: BusinessProfile,
        reservation: Reservation,
        conversation_text: str,
        utterance: str,
        caller_email: Optional[str] = None,
    ) -> Optional[NotificationCategory]:
        """Notify the owner of a new reservation; returns the record category written."""
        await self.notify(business, NotificationCategory.BOOKING, booking_payload(reservation))

        category = booking_record_category(
            business.notification_settings, reservation.party_size, conversation_text
        )
        if category is None:
            return None
        summary = (
            f"New booking: {reservation.customer_name} for "
            f"{format_date(reservation.appointment_date)} at "
            f"{format_time(reservation.appointment_time)}. "
            f"Party size: {reservation.party_size}."
        )
        if reservation.notes:
            summary += f" Notes: {reservation.notes}"
        record = CustomerMessage(
            business_id=business.id,
            caller_number=reservation.customer_phone,
            caller_name=reservation.customer_name,
            caller_email=caller_email,
            message=summary,
            request_type="booking",
            original_request=utterance,
            notification_category=category,
        )
        await self._store(record)
        return category

    async def message_taken(self, business: BusinessProfile, message: CustomerMessage) -> bool:
        """Store a follow-up message and notify the owner.

        Returns False without side effects if the category is disabled.
        """
        if not is_enabled(business.notification_settings, message.notification_category):
            logger.info(
                "Notifications disabled for %s, skipping message",
                message.notification_category.value,
            )
            return False
        await self._store(message)
        await self.notify(business, message.notification_category, message_payload(business, message))
        return True

    async def _store(self, record: CustomerMessage) -> None:
        try:
            await self._datastore.insert_customer_message(record.model_dump(mode="json"))
        except DatastoreError as e:
            logger.error("Failed to store %s message: %s", record.notification_category.value, e)

    async def _attempt(self, channel: str, send) -> bool:
        try:
            await send
        except NotificationDeliveryError as e:
            logger.warning("Notification via %s failed: %s", channel, e)
            return False
        except Exception:
            logger.exception("Unexpected error delivering notification via %s", channel)
            return False
        logger.info("Notification delivered via %s", channel)
        return True

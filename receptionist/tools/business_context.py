"""
Business context loader.

Issues the four per-turn reads (profile, knowledge base, services and the
upcoming reservation window) concurrently and derives the business's local
clock from its own timezone, never the server's.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from receptionist.clients.datastore import Datastore
from receptionist.config import AppConfig, settings
from receptionist.logging_context import get_call_logger
from receptionist.schemas.business_schema import (
    BusinessContext,
    BusinessProfile,
    KnowledgeEntry,
    Service,
)

logger = get_call_logger(__name__)

Clock = Callable[[], datetime]


class BusinessNotFoundError(Exception):
    """Raised when the business referenced by a turn does not exist."""

    def __init__(self, business_id: str):
        super().__init__(f"Business not found: {business_id}")
        self.business_id = business_id


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def business_timezone(business: BusinessProfile, default: str) -> ZoneInfo:
    """Resolve the business timezone, falling back to ``default`` if unknown."""
    name = business.timezone or default
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r for business %s, using %s", name, business.id, default)
        return ZoneInfo(default)


class BusinessContextLoader:
    """Loads everything a turn needs to know about one business."""

    def __init__(
        self,
        datastore: Datastore,
        clock: Clock = utc_now,
        config: Optional[AppConfig] = None,
    ):
        self._datastore = datastore
        self._clock = clock
        self._config = config or settings

    async def load(self, business_id: str) -> BusinessContext:
        now = self._clock()
        window_days = self._config.datastore.booking_window_days
        status = self._config.datastore.reservation_status
        # The local date is unknown until the profile arrives, so the reservation
        # read spans one extra day either side and is trimmed afterwards.
        utc_today = now.astimezone(timezone.utc).date()
        start = (utc_today - timedelta(days=1)).isoformat()
        end = (utc_today + timedelta(days=window_days + 1)).isoformat()

        business_row, knowledge_rows, service_rows, reservation_rows = await asyncio.gather(
            self._datastore.get_business(business_id),
            self._datastore.list_knowledge_base(business_id),
            self._datastore.list_services(business_id),
            self._datastore.list_reservations(business_id, start, end, status),
        )
        if business_row is None:
            raise BusinessNotFoundError(business_id)

        business = BusinessProfile.model_validate(business_row)
        conversation = self._config.conversation
        local_now = now.astimezone(business_timezone(business, conversation.default_timezone))
        local_today = local_now.date()
        window_start = local_today.isoformat()
        window_end = (local_today + timedelta(days=window_days)).isoformat()
        upcoming = [
            row for row in reservation_rows
            if window_start <= str(row.get("appointment_date", "")) <= window_end
        ]

        threshold = business.notification_settings.ai_confidence_threshold
        context = BusinessContext(
            business=business,
            knowledge_base=[KnowledgeEntry.model_validate(r) for r in knowledge_rows],
            services=[Service.model_validate(r) for r in service_rows],
            upcoming_reservations=upcoming,
            local_now=local_now,
            slot_minutes=business.appointment_slot_duration or conversation.slot_minutes,
            max_per_slot=business.max_appointments_per_slot or conversation.max_per_slot,
            confidence_threshold=(
                threshold if threshold is not None else conversation.confidence_threshold
            ),
            closing_message=business.closing_message or conversation.closing_message,
        )
        logger.debug(
            "Loaded context for %s: %d kb entries, %d services, %d upcoming bookings, open=%s",
            business.name, len(context.knowledge_base), len(context.services),
            len(upcoming), context.is_open_now,
        )
        return context

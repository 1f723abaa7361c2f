"""
Slot availability and nearby-alternative search.

A slot is a (date, time) bucket; it is available while its count of
scheduled reservations is strictly below the business's per-slot
capacity. Alternatives are probed outward from the requested time in
slot-duration steps, earlier times first, and never leave the day's
opening window.
"""

from collections import Counter
from datetime import date as date_type
from datetime import timedelta
from typing import Optional

from receptionist.clients.datastore import Datastore
from receptionist.config import settings
from receptionist.logging_context import get_call_logger
from receptionist.schemas.booking_schema import AvailabilityResult
from receptionist.schemas.business_schema import WEEKDAYS, BusinessContext, DayHours
from receptionist.utils import minutes_of_day, normalize_time, time_from_minutes

logger = get_call_logger(__name__)

MAX_BACKWARD = 2
PROBE_STEPS = 3

CLOSED_DAY = "closed_day"
OUTSIDE_HOURS = "outside_hours"


def weekday_of(date: str) -> str:
    return WEEKDAYS[date_type.fromisoformat(date).weekday()]


def closed_reason(context: BusinessContext, date: str, time: str) -> Optional[str]:
    """Why ``(date, time)`` cannot be booked at all, or None if it is within hours."""
    hours = context.business.hours_for(weekday_of(date))
    if hours.is_closed:
        return CLOSED_DAY
    if not hours.contains(time):
        return OUTSIDE_HOURS
    return None


def count_by_time(rows: list[dict]) -> Counter:
    counts: Counter = Counter()
    for row in rows:
        clock_time = normalize_time(str(row.get("appointment_time", "")))
        if clock_time:
            counts[clock_time] += 1
    return counts


def alternative_times(
    hours: DayHours,
    time: str,
    slot_minutes: int,
    capacity: int,
    counts: Counter,
    limit: Optional[int] = None,
) -> list[str]:
    """Probe up to three slots each way; at most two earlier, earlier first."""
    limit = limit or settings.conversation.max_alternatives
    if hours.is_closed:
        return []
    requested = minutes_of_day(time)
    open_at = minutes_of_day(hours.open)
    close_at = minutes_of_day(hours.close)

    def free(minutes: int) -> bool:
        return counts[time_from_minutes(minutes)] < capacity

    found = []
    for step in range(1, PROBE_STEPS + 1):
        candidate = requested - step * slot_minutes
        if candidate >= open_at and free(candidate):
            found.append(time_from_minutes(candidate))
            if len(found) >= MAX_BACKWARD:
                break
    for step in range(1, PROBE_STEPS + 1):
        candidate = requested + step * slot_minutes
        if candidate < close_at and free(candidate):
            found.append(time_from_minutes(candidate))
            if len(found) >= limit:
                break
    return found[:limit]


class AvailabilityEngine:
    """Answers capacity questions for one business and date."""

    def __init__(self, datastore: Datastore, status: Optional[str] = None):
        self._datastore = datastore
        self._status = status or settings.datastore.reservation_status

    async def slot_counts(
        self, context: BusinessContext, date: str, refresh: bool = False
    ) -> Counter:
        """Reservation counts per time on ``date``.

        Uses the reservations loaded with the context when the date falls in
        its window, unless ``refresh`` asks for current datastore state.
        """
        window_end = (
            context.local_now.date() + timedelta(days=settings.datastore.booking_window_days)
        ).isoformat()
        if not refresh and context.today <= date <= window_end:
            return count_by_time(
                [r for r in context.upcoming_reservations if r.get("appointment_date") == date]
            )
        rows = await self._datastore.list_reservations(
            context.business.id, date, date, self._status
        )
        return count_by_time(rows)

    async def check(self, context: BusinessContext, date: str, time: str) -> AvailabilityResult:
        """Phase-one (advisory) check of a single slot."""
        capacity = context.max_per_slot
        reason = closed_reason(context, date, time)
        if reason:
            logger.info("Requested %s %s rejected: %s", date, time, reason)
            return AvailabilityResult(available=False, capacity=capacity, closed_reason=reason)
        counts = await self.slot_counts(context, date)
        count = counts[time]
        return AvailabilityResult(available=count < capacity, count=count, capacity=capacity)

    async def find_alternatives(
        self,
        context: BusinessContext,
        date: str,
        time: str,
        refresh: bool = False,
    ) -> list[str]:
        hours = context.business.hours_for(weekday_of(date))
        counts = await self.slot_counts(context, date, refresh=refresh)
        alternatives = alternative_times(
            hours, time, context.slot_minutes, context.max_per_slot, counts
        )
        logger.info("Alternatives for %s %s: %s", date, time, alternatives or "none")
        return alternatives

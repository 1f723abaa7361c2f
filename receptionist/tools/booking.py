"""
Booking commit with a just-in-time capacity re-check.

The availability check made while routing the turn is advisory. Right
before the insert the committer re-counts the exact slot, and aborts if
another call has filled it in the meantime. Within one process, commits
for the same (business, date, time) are serialized by a per-slot lock;
across processes the re-check only narrows the window, since the
datastore offers no conditional insert.
"""

import asyncio
from typing import Optional
from weakref import WeakValueDictionary

from receptionist.clients.datastore import Datastore, DatastoreError
from receptionist.config import settings
from receptionist.logging_context import get_call_logger
from receptionist.schemas.booking_schema import BookingRequest, CommitResult, Reservation
from receptionist.schemas.business_schema import BusinessContext
from receptionist.tools.availability import AvailabilityEngine

logger = get_call_logger(__name__)


class SlotLockRegistry:
    """Hands out one asyncio.Lock per slot, dropped once no commit holds it."""

    def __init__(self):
        self._locks: WeakValueDictionary = WeakValueDictionary()

    def lock_for(self, business_id: str, date: str, time: str) -> asyncio.Lock:
        key = (business_id, date, time)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


_slot_locks = SlotLockRegistry()


class BookingCommitter:
    """Persists reservations that pass the phase-two re-check."""

    def __init__(
        self,
        datastore: Datastore,
        availability: AvailabilityEngine,
        locks: Optional[SlotLockRegistry] = None,
        status: Optional[str] = None,
    ):
        self._datastore = datastore
        self._availability = availability
        self._locks = locks or _slot_locks
        self._status = status or settings.datastore.reservation_status

    async def commit(self, context: BusinessContext, request: BookingRequest) -> CommitResult:
        business_id = context.business.id
        capacity = context.max_per_slot
        async with self._locks.lock_for(business_id, request.date, request.time):
            try:
                count = await self._datastore.count_reservations(
                    business_id, request.date, request.time, self._status
                )
            except DatastoreError as e:
                return CommitResult(success=False, error=str(e))

            if count >= capacity:
                logger.warning(
                    "Slot %s %s filled before commit (%d/%d)",
                    request.date, request.time, count, capacity,
                )
                return CommitResult(
                    success=False,
                    race_lost=True,
                    alternatives=await self._fresh_alternatives(context, request),
                )

            reservation = Reservation(
                business_id=business_id,
                customer_name=request.name,
                customer_phone=request.phone,
                appointment_date=request.date,
                appointment_time=request.time,
                duration_minutes=context.slot_minutes,
                party_size=request.party_size,
                notes=request.notes,
                status=self._status,
            )
            try:
                stored = await self._datastore.insert_reservation(
                    reservation.model_dump(exclude={"id"})
                )
            except DatastoreError as e:
                logger.error("Reservation insert failed for %s %s: %s", request.date, request.time, e)
                return CommitResult(success=False, error=str(e))

        logger.info(
            "Reservation created for %s on %s at %s (party of %d)",
            request.name, request.date, request.time, request.party_size,
        )
        return CommitResult(success=True, reservation=Reservation.from_row(stored))

    async def _fresh_alternatives(
        self, context: BusinessContext, request: BookingRequest
    ) -> list[str]:
        try:
            return await self._availability.find_alternatives(
                context, request.date, request.time, refresh=True
            )
        except DatastoreError as e:
            logger.error("Could not re-read reservations after lost race: %s", e)
            return []

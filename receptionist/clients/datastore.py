"""
Datastore access for businesses, knowledge base, services, reservations
and customer messages.

Every query is scoped by ``business_id``: the client-carried memory blob
is unauthenticated, so the tenant reference is the only authority.
``SupabaseDatastore`` drives the synchronous supabase client through
``asyncio.to_thread``; ``InMemoryDatastore`` backs local runs and tests.
"""

import asyncio
import copy
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from supabase import Client, create_client

from receptionist.config import settings

logger = logging.getLogger(__name__)

Row = dict[str, Any]


class DatastoreError(Exception):
    """Raised when the backing store fails or rejects a query."""


class Datastore(ABC):
    """Filtered read/insert capability over the tenant tables."""

    @abstractmethod
    async def get_business(self, business_id: str) -> Optional[Row]:
        ...

    @abstractmethod
    async def list_knowledge_base(self, business_id: str) -> list[Row]:
        ...

    @abstractmethod
    async def list_services(self, business_id: str) -> list[Row]:
        """Active services only, ordered by name."""

    @abstractmethod
    async def list_reservations(
        self, business_id: str, start_date: str, end_date: str, status: str
    ) -> list[Row]:
        """Reservations with ``start_date <= appointment_date <= end_date``."""

    @abstractmethod
    async def count_reservations(
        self, business_id: str, date: str, time: str, status: str
    ) -> int:
        ...

    @abstractmethod
    async def insert_reservation(self, row: Row) -> Row:
        ...

    @abstractmethod
    async def insert_customer_message(self, row: Row) -> Row:
        ...


class SupabaseDatastore(Datastore):
    """Datastore backed by Supabase (PostgREST) tables."""

    def __init__(self, client: Optional[Client] = None):
        if client is None:
            if not settings.datastore.supabase_url or not settings.datastore.supabase_service_key:
                raise DatastoreError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")
            client = create_client(
                settings.datastore.supabase_url,
                settings.datastore.supabase_service_key,
            )
        self._client = client

    async def _run(self, description: str, query: Callable[[], Any]) -> Any:
        try:
            return await asyncio.to_thread(query)
        except Exception as e:
            logger.error("Datastore %s failed: %s", description, e)
            raise DatastoreError(f"{description} failed: {e}") from e

    async def get_business(self, business_id: str) -> Optional[Row]:
        response = await self._run(
            "business lookup",
            lambda: self._client.table("businesses")
            .select("*")
            .eq("id", business_id)
            .limit(1)
            .execute(),
        )
        return response.data[0] if response.data else None

    async def list_knowledge_base(self, business_id: str) -> list[Row]:
        response = await self._run(
            "knowledge base read",
            lambda: self._client.table("knowledge_base")
            .select("*")
            .eq("business_id", business_id)
            .execute(),
        )
        return response.data or []

    async def list_services(self, business_id: str) -> list[Row]:
        response = await self._run(
            "services read",
            lambda: self._client.table("services")
            .select("*")
            .eq("business_id", business_id)
            .eq("active", True)
            .order("name")
            .execute(),
        )
        return response.data or []

    async def list_reservations(
        self, business_id: str, start_date: str, end_date: str, status: str
    ) -> list[Row]:
        response = await self._run(
            "reservations read",
            lambda: self._client.table("appointments")
            .select("*")
            .eq("business_id", business_id)
            .gte("appointment_date", start_date)
            .lte("appointment_date", end_date)
            .eq("status", status)
            .order("appointment_date")
            .order("appointment_time")
            .execute(),
        )
        return response.data or []

    async def count_reservations(
        self, business_id: str, date: str, time: str, status: str
    ) -> int:
        response = await self._run(
            "reservation count",
            lambda: self._client.table("appointments")
            .select("id", count="exact")
            .eq("business_id", business_id)
            .eq("appointment_date", date)
            .eq("appointment_time", time)
            .eq("status", status)
            .execute(),
        )
        if response.count is not None:
            return response.count
        return len(response.data or [])

    async def insert_reservation(self, row: Row) -> Row:
        response = await self._run(
            "reservation insert",
            lambda: self._client.table("appointments").insert(row).execute(),
        )
        if not response.data:
            raise DatastoreError("reservation insert returned no row")
        return response.data[0]

    async def insert_customer_message(self, row: Row) -> Row:
        response = await self._run(
            "customer message insert",
            lambda: self._client.table("customer_messages").insert(row).execute(),
        )
        if not response.data:
            raise DatastoreError("customer message insert returned no row")
        return response.data[0]


class InMemoryDatastore(Datastore):
    """Dict-backed datastore for local runs and tests."""

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        """Drop every stored row."""
        self.businesses: dict[str, Row] = {}
        self.knowledge_base: list[Row] = []
        self.services: list[Row] = []
        self.reservations: list[Row] = []
        self.customer_messages: list[Row] = []

    def add_business(self, row: Row) -> None:
        self.businesses[row["id"]] = copy.deepcopy(row)

    def add_knowledge(self, row: Row) -> None:
        self.knowledge_base.append(copy.deepcopy(row))

    def add_service(self, row: Row) -> None:
        self.services.append({"active": True, **row})

    def add_reservation(self, row: Row) -> None:
        self.reservations.append({"id": uuid.uuid4().hex, "status": "scheduled", **row})

    async def get_business(self, business_id: str) -> Optional[Row]:
        row = self.businesses.get(business_id)
        return copy.deepcopy(row) if row else None

    async def list_knowledge_base(self, business_id: str) -> list[Row]:
        return [dict(r) for r in self.knowledge_base if r.get("business_id") == business_id]

    async def list_services(self, business_id: str) -> list[Row]:
        rows = [
            dict(r) for r in self.services
            if r.get("business_id") == business_id and r.get("active")
        ]
        return sorted(rows, key=lambda r: r.get("name", ""))

    async def list_reservations(
        self, business_id: str, start_date: str, end_date: str, status: str
    ) -> list[Row]:
        rows = [
            dict(r) for r in self.reservations
            if r.get("business_id") == business_id
            and r.get("status") == status
            and start_date <= r.get("appointment_date", "") <= end_date
        ]
        return sorted(rows, key=lambda r: (r["appointment_date"], r["appointment_time"]))

    async def count_reservations(
        self, business_id: str, date: str, time: str, status: str
    ) -> int:
        return sum(
            1 for r in self.reservations
            if r.get("business_id") == business_id
            and r.get("appointment_date") == date
            and r.get("appointment_time") == time
            and r.get("status") == status
        )

    async def insert_reservation(self, row: Row) -> Row:
        stored = {"id": uuid.uuid4().hex, **row}
        self.reservations.append(stored)
        return dict(stored)

    async def insert_customer_message(self, row: Row) -> Row:
        stored = {"id": uuid.uuid4().hex, **row}
        self.customer_messages.append(stored)
        return dict(stored)

from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, Protocol, Sequence

from ..models import Booking, Resource, Role, Session, Slot, User, Window
from .slots import SlotSpan

BookingRow = tuple[Booking, Slot, Window, Resource]
SlotRow = tuple[Slot, Window, Resource]
WindowSummary = tuple[Window, Resource, int, int]


class UserRepository(Protocol):
    async def get_by_email(self, email: str) -> User | None: ...

    async def create(self, *, email: str, name: str, password_hash: str, role: Role) -> User: ...


class SessionRepository(Protocol):
    async def get(self, handle: str) -> Session | None: ...

    async def create(self, *, handle: str, user_id: int, role: Role, created_at: datetime) -> Session: ...

    async def delete(self, handle: str) -> bool: ...


class ResourceRepository(Protocol):
    async def get_for_update(self, resource_id: int) -> Resource | None: ...

    async def get_or_create_for_update(self, *, label: str, owner_id: int) -> Resource: ...

    async def delete(self, resource: Resource) -> None: ...


class WindowRepository(Protocol):
    async def get_for_update(self, window_id: int) -> tuple[Window, Resource] | None: ...

    async def list_for_resource_day(self, resource_id: int, day: date) -> Sequence[Window]: ...

    async def list_for_resource(self, resource_id: int) -> Sequence[Window]: ...

    async def list_with_counts(self, label: str | None = None) -> Sequence[WindowSummary]: ...

    async def create(
        self,
        *,
        resource_id: int,
        day: date,
        starts_at: datetime,
        ends_at: datetime,
        created_by: int,
    ) -> Window: ...

    async def update(
        self,
        window: Window,
        *,
        resource_id: int,
        day: date,
        starts_at: datetime,
        ends_at: datetime,
    ) -> Window: ...

    async def delete(self, window: Window) -> None: ...


class SlotRepository(Protocol):
    async def get_with_context(self, slot_id: int) -> SlotRow | None: ...

    async def create_many(self, window_id: int, spans: Iterable[SlotSpan]) -> list[Slot]: ...

    async def mark_booked(self, slot_id: int) -> bool: ...

    async def release(self, slot_id: int) -> bool: ...

    async def delete_if_free(self, slot_id: int) -> bool: ...

    async def delete_free_for_windows(self, window_ids: Sequence[int]) -> int: ...

    async def count_for_windows(self, window_ids: Sequence[int]) -> int: ...

    async def list_available(self, label: str | None = None, day: date | None = None) -> Sequence[SlotRow]: ...


class BookingRepository(Protocol):
    async def token_exists(self, token_code: str) -> bool: ...

    async def create(self, *, slot_id: int, user_id: int, token_code: str) -> Booking: ...

    async def get_for_update(self, booking_id: int, user_id: int | None = None) -> Booking | None: ...

    async def delete(self, booking: Booking) -> None: ...

    async def list_detailed(self, user_id: int | None = None) -> Sequence[BookingRow]: ...

    async def get_by_token(self, token_code: str, user_id: int | None = None) -> BookingRow | None: ...

    async def count_for_user(self, user_id: int, *, starting_after: datetime | None = None) -> int: ...

    async def recent_for_user(self, user_id: int, limit: int) -> Sequence[BookingRow]: ...

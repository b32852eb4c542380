from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Iterable, List, Optional, Sequence, Tuple, cast

from sqlalchemy import Select, case, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.repositories import (
    BookingRepository,
    BookingRow,
    ResourceRepository,
    SessionRepository,
    SlotRepository,
    SlotRow,
    UserRepository,
    WindowRepository,
    WindowSummary,
)
from ..domain.slots import SlotSpan
from ..models import Booking, Resource, Role, Session, Slot, User, Window
from ..utils.time import utc_now_naive

logger = logging.getLogger(__name__)


class SqlAlchemyUserRepository(UserRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_email(self, email: str) -> User | None:
        return await self.session.scalar(select(User).where(User.email == email))

    async def create(self, *, email: str, name: str, password_hash: str, role: Role) -> User:
        now = utc_now_naive()
        user = User(
            email=email,
            name=name,
            password_hash=password_hash,
            role=role,
            created_at=now,
            updated_at=now,
        )
        self.session.add(user)
        await self.session.flush()
        return user


class SqlAlchemySessionRepository(SessionRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, handle: str) -> Session | None:
        return await self.session.scalar(select(Session).where(Session.handle == handle))

    async def create(self, *, handle: str, user_id: int, role: Role, created_at: datetime) -> Session:
        record = Session(handle=handle, user_id=user_id, role=role, created_at=created_at)
        self.session.add(record)
        await self.session.flush()
        return record

    async def delete(self, handle: str) -> bool:
        result = await self.session.execute(delete(Session).where(Session.handle == handle))
        return bool(result.rowcount)


class SqlAlchemyResourceRepository(ResourceRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_for_update(self, resource_id: int) -> Resource | None:
        return await self.session.scalar(select(Resource).where(Resource.id == resource_id).with_for_update())

    async def get_by_label_for_update(self, label: str) -> Resource | None:
        return await self.session.scalar(select(Resource).where(Resource.label == label).with_for_update())

    async def get_or_create_for_update(self, *, label: str, owner_id: int) -> Resource:
        """
        Locked resource row for ``label``, inserting it when missing.

        The insert runs in a savepoint so that losing a race on
        ``uq_resources_label`` only undoes the insert; the row the other
        transaction created is then locked and returned.
        """
        resource = await self.get_by_label_for_update(label)
        if resource is not None:
            return resource
        now = utc_now_naive()
        resource = Resource(label=label, owner_id=owner_id, created_at=now, updated_at=now)
        try:
            async with self.session.begin_nested():
                self.session.add(resource)
        except IntegrityError:
            existing = await self.get_by_label_for_update(label)
            if existing is None:
                raise
            logger.info("resource %s created concurrently, reusing it", label)
            return existing
        return resource

    async def delete(self, resource: Resource) -> None:
        await self.session.delete(resource)
        await self.session.flush()


class SqlAlchemyWindowRepository(WindowRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_for_update(self, window_id: int) -> Optional[Tuple[Window, Resource]]:
        stmt: Select[Tuple[Window, Resource]] = (
            select(Window, Resource)
            .join(Resource, Window.resource_id == Resource.id)
            .where(Window.id == window_id)
            .with_for_update()
        )
        row = (await self.session.execute(stmt)).first()
        return cast(Optional[Tuple[Window, Resource]], row)

    async def list_for_resource_day(self, resource_id: int, day: date) -> List[Window]:
        stmt = (
            select(Window)
            .where(Window.resource_id == resource_id, Window.day == day)
            .order_by(Window.starts_at)
        )
        return list((await self.session.scalars(stmt)).all())

    async def list_for_resource(self, resource_id: int) -> List[Window]:
        stmt = select(Window).where(Window.resource_id == resource_id).order_by(Window.day, Window.starts_at)
        return list((await self.session.scalars(stmt)).all())

    async def list_with_counts(self, label: str | None = None) -> List[WindowSummary]:
        booked_count = func.coalesce(func.sum(case((Slot.booked.is_(True), 1), else_=0)), 0)
        stmt = (
            select(Window, Resource, func.count(Slot.id).label("total"), booked_count.label("booked"))
            .join(Resource, Window.resource_id == Resource.id)
            .outerjoin(Slot, Slot.window_id == Window.id)
            .group_by(Window.id, Resource.id)
            .order_by(Window.day.desc(), Window.starts_at)
        )
        if label is not None:
            stmt = stmt.where(Resource.label == label)
        rows = await self.session.execute(stmt)
        return [(window, resource, int(total), int(booked)) for window, resource, total, booked in rows.all()]

    async def create(
        self,
        *,
        resource_id: int,
        day: date,
        starts_at: datetime,
        ends_at: datetime,
        created_by: int,
    ) -> Window:
        now = utc_now_naive()
        window = Window(
            resource_id=resource_id,
            day=day,
            starts_at=starts_at,
            ends_at=ends_at,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        self.session.add(window)
        await self.session.flush()
        return window

    async def update(
        self,
        window: Window,
        *,
        resource_id: int,
        day: date,
        starts_at: datetime,
        ends_at: datetime,
    ) -> Window:
        window.resource_id = resource_id
        window.day = day
        window.starts_at = starts_at
        window.ends_at = ends_at
        window.updated_at = utc_now_naive()
        self.session.add(window)
        await self.session.flush()
        return window

    async def delete(self, window: Window) -> None:
        await self.session.delete(window)
        await self.session.flush()


class SqlAlchemySlotRepository(SlotRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_with_context(self, slot_id: int) -> Optional[SlotRow]:
        stmt: Select[Tuple[Slot, Window, Resource]] = (
            select(Slot, Window, Resource)
            .join(Window, Slot.window_id == Window.id)
            .join(Resource, Window.resource_id == Resource.id)
            .where(Slot.id == slot_id)
        )
        row = (await self.session.execute(stmt)).first()
        return cast(Optional[SlotRow], row)

    async def create_many(self, window_id: int, spans: Iterable[SlotSpan]) -> List[Slot]:
        now = utc_now_naive()
        slots = [
            Slot(
                window_id=window_id,
                starts_at=span.starts_at,
                ends_at=span.ends_at,
                booked=False,
                created_at=now,
                updated_at=now,
            )
            for span in spans
        ]
        self.session.add_all(slots)
        await self.session.flush()
        return slots

    async def mark_booked(self, slot_id: int) -> bool:
        # Compare-and-set: only a free slot flips, concurrent callers see rowcount 0.
        stmt = (
            update(Slot)
            .where(Slot.id == slot_id, Slot.booked.is_(False))
            .values(booked=True, updated_at=utc_now_naive())
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def release(self, slot_id: int) -> bool:
        stmt = (
            update(Slot)
            .where(Slot.id == slot_id, Slot.booked.is_(True))
            .values(booked=False, updated_at=utc_now_naive())
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def delete_if_free(self, slot_id: int) -> bool:
        result = await self.session.execute(delete(Slot).where(Slot.id == slot_id, Slot.booked.is_(False)))
        return result.rowcount == 1

    async def delete_free_for_windows(self, window_ids: Sequence[int]) -> int:
        if not window_ids:
            return 0
        result = await self.session.execute(
            delete(Slot).where(Slot.window_id.in_(window_ids), Slot.booked.is_(False))
        )
        return int(result.rowcount or 0)

    async def count_for_windows(self, window_ids: Sequence[int]) -> int:
        if not window_ids:
            return 0
        stmt = select(func.count(Slot.id)).where(Slot.window_id.in_(window_ids))
        return int(await self.session.scalar(stmt) or 0)

    async def list_available(self, label: str | None = None, day: date | None = None) -> List[SlotRow]:
        stmt: Select[Tuple[Slot, Window, Resource]] = (
            select(Slot, Window, Resource)
            .join(Window, Slot.window_id == Window.id)
            .join(Resource, Window.resource_id == Resource.id)
            .where(Slot.booked.is_(False))
            .order_by(Slot.starts_at, Resource.label)
        )
        if label is not None:
            stmt = stmt.where(Resource.label == label)
        if day is not None:
            stmt = stmt.where(Window.day == day)
        rows = await self.session.execute(stmt)
        return cast(List[SlotRow], list(rows.all()))


class SqlAlchemyBookingRepository(BookingRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def token_exists(self, token_code: str) -> bool:
        stmt = select(Booking.id).where(Booking.token_code == token_code)
        return await self.session.scalar(stmt) is not None

    async def create(self, *, slot_id: int, user_id: int, token_code: str) -> Booking:
        booking = Booking(
            slot_id=slot_id,
            user_id=user_id,
            token_code=token_code,
            created_at=utc_now_naive(),
        )
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def get_for_update(self, booking_id: int, user_id: int | None = None) -> Booking | None:
        stmt = select(Booking).where(Booking.id == booking_id).with_for_update()
        if user_id is not None:
            stmt = stmt.where(Booking.user_id == user_id)
        return await self.session.scalar(stmt)

    async def delete(self, booking: Booking) -> None:
        await self.session.delete(booking)
        await self.session.flush()

    def _detailed(self) -> Select[Tuple[Booking, Slot, Window, Resource]]:
        return (
            select(Booking, Slot, Window, Resource)
            .join(Slot, Booking.slot_id == Slot.id)
            .join(Window, Slot.window_id == Window.id)
            .join(Resource, Window.resource_id == Resource.id)
        )

    async def list_detailed(self, user_id: int | None = None) -> List[BookingRow]:
        stmt = self._detailed().order_by(Slot.starts_at.desc())
        if user_id is not None:
            stmt = stmt.where(Booking.user_id == user_id)
        rows = await self.session.execute(stmt)
        return cast(List[BookingRow], list(rows.all()))

    async def get_by_token(self, token_code: str, user_id: int | None = None) -> Optional[BookingRow]:
        stmt = self._detailed().where(Booking.token_code == token_code)
        if user_id is not None:
            stmt = stmt.where(Booking.user_id == user_id)
        row = (await self.session.execute(stmt)).first()
        return cast(Optional[BookingRow], row)

    async def count_for_user(self, user_id: int, *, starting_after: datetime | None = None) -> int:
        stmt = select(func.count(Booking.id)).where(Booking.user_id == user_id)
        if starting_after is not None:
            stmt = stmt.join(Slot, Booking.slot_id == Slot.id).where(Slot.starts_at > starting_after)
        return int(await self.session.scalar(stmt) or 0)

    async def recent_for_user(self, user_id: int, limit: int) -> List[BookingRow]:
        stmt = (
            self._detailed()
            .where(Booking.user_id == user_id)
            .order_by(Booking.created_at.desc(), Booking.id.desc())
            .limit(limit)
        )
        rows = await self.session.execute(stmt)
        return cast(List[BookingRow], list(rows.all()))

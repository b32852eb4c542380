from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_serializer

from .models import Booking, Resource, Role, Slot, User, Window
from .utils.time import format_hhmm


class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    name: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)
    role: Role


class LoginRequest(BaseModel):
    email: str
    password: str


class UserRead(BaseModel):
    user_id: int
    email: str
    name: str
    role: Role

    @classmethod
    def from_db(cls, *, user: User) -> "UserRead":
        return cls(user_id=user.id, email=user.email, name=user.name, role=user.role)


class WhoAmI(BaseModel):
    user_id: int
    role: Role


class WindowCreate(BaseModel):
    label: str = Field(description="Room label, e.g. A1")
    date: str = Field(description="YYYY-MM-DD, local to the room")
    start: str = Field(description="HH:MM, 24-hour")
    end: str = Field(description="HH:MM, 24-hour")


class WindowCreated(BaseModel):
    resource_id: int
    window_id: int
    label: str
    slots_created: int


class WindowRead(BaseModel):
    window_id: int
    resource_id: int
    label: str
    date: date
    start: datetime
    end: datetime
    total_slots: int
    booked_slots: int
    available_slots: int

    @field_serializer("start", "end")
    def _ser_time(self, dt: datetime) -> str:
        return format_hhmm(dt)

    @classmethod
    def from_db(cls, *, window: Window, resource: Resource, total: int, booked: int) -> "WindowRead":
        return cls(
            window_id=window.id,
            resource_id=resource.id,
            label=resource.label,
            date=window.day,
            start=window.starts_at,
            end=window.ends_at,
            total_slots=total,
            booked_slots=booked,
            available_slots=total - booked,
        )


class SlotAvailability(BaseModel):
    slot_id: int
    resource_label: str
    date: date
    start: datetime
    end: datetime

    @field_serializer("start", "end")
    def _ser_time(self, dt: datetime) -> str:
        return format_hhmm(dt)

    @classmethod
    def from_db(cls, *, slot: Slot, window: Window, resource: Resource) -> "SlotAvailability":
        return cls(
            slot_id=slot.id,
            resource_label=resource.label,
            date=window.day,
            start=slot.starts_at,
            end=slot.ends_at,
        )


class BookingCreate(BaseModel):
    slot_id: int = Field(ge=1)


class BookingCreated(BaseModel):
    booking_id: int
    token_code: str


class BookingRead(BaseModel):
    booking_id: int
    token_code: str
    consumer_id: int
    slot_id: int
    resource_label: str
    date: date
    start: datetime
    end: datetime
    booked_at: datetime
    message: Optional[str] = None

    @field_serializer("start", "end")
    def _ser_time(self, dt: datetime) -> str:
        return format_hhmm(dt)

    @field_serializer("booked_at")
    def _ser_booked_at(self, dt: datetime) -> str:
        return dt.isoformat()

    @classmethod
    def from_db(cls, *, booking: Booking, slot: Slot, window: Window, resource: Resource) -> "BookingRead":
        return cls(
            booking_id=booking.id,
            token_code=booking.token_code,
            consumer_id=booking.user_id,
            slot_id=slot.id,
            resource_label=resource.label,
            date=window.day,
            start=slot.starts_at,
            end=slot.ends_at,
            booked_at=booking.created_at,
        )


class DashboardSummary(BaseModel):
    total_bookings: int
    upcoming_bookings: int
    recent_bookings: List[BookingRead]


class OkResponse(BaseModel):
    ok: bool = True
    message: Optional[str] = None

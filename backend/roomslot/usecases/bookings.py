import logging
from datetime import datetime
from typing import Sequence

from ..domain.errors import ConflictError, InconsistentStateError, NotFoundError, TokenCollisionError
from ..domain.repositories import BookingRepository, BookingRow, SlotRepository
from ..domain.services import Principal, booking_owner_scope, require_role
from ..domain.tokens import make_token_code
from ..models import Booking, Role

logger = logging.getLogger(__name__)

RECENT_BOOKINGS_LIMIT = 5


async def book_slot(
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    *,
    principal: Principal,
    slot_id: int,
) -> BookingRow:
    """
    Claim a free slot for the consumer and issue its token code.

    Must run inside one transaction: the slot flip and the booking insert
    commit together or not at all.
    """
    require_role(principal, Role.CONSUMER)
    row = await slot_repo.get_with_context(slot_id)
    if row is None:
        raise NotFoundError("slot not found")
    slot, window, resource = row

    if not await slot_repo.mark_booked(slot.id):
        raise ConflictError("Slot not available")

    token_code = make_token_code(resource.label, slot.starts_at)
    if await booking_repo.token_exists(token_code):
        logger.error("token %s already issued while slot %s was free", token_code, slot.id)
        raise TokenCollisionError(f"token {token_code} already issued")

    booking = await booking_repo.create(slot_id=slot.id, user_id=principal.user_id, token_code=token_code)
    return booking, slot, window, resource


async def cancel_booking(
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    *,
    principal: Principal,
    booking_id: int,
) -> Booking:
    owner_id = booking_owner_scope(principal)
    booking = await booking_repo.get_for_update(booking_id, user_id=owner_id)
    if booking is None:
        raise NotFoundError("Booking not found or does not belong to you")

    await booking_repo.delete(booking)
    if not await slot_repo.release(booking.slot_id):
        logger.error("booking %s referenced slot %s which was not booked", booking.id, booking.slot_id)
        raise InconsistentStateError(f"slot {booking.slot_id} was not booked")
    return booking


async def list_bookings(
    booking_repo: BookingRepository,
    *,
    principal: Principal,
) -> Sequence[BookingRow]:
    return await booking_repo.list_detailed(user_id=booking_owner_scope(principal))


async def get_booking_by_token(
    booking_repo: BookingRepository,
    *,
    principal: Principal,
    token_code: str,
) -> BookingRow:
    row = await booking_repo.get_by_token(token_code.strip().upper(), user_id=booking_owner_scope(principal))
    if row is None:
        raise NotFoundError("booking not found")
    return row


async def consumer_dashboard(
    booking_repo: BookingRepository,
    *,
    principal: Principal,
    now: datetime,
    recent_limit: int = RECENT_BOOKINGS_LIMIT,
) -> tuple[int, int, Sequence[BookingRow]]:
    """
    Summary for a consumer: total bookings, bookings whose slot starts after
    ``now`` (room-local wall clock), and the most recently made bookings.
    """
    require_role(principal, Role.CONSUMER)
    total = await booking_repo.count_for_user(principal.user_id)
    upcoming = await booking_repo.count_for_user(principal.user_id, starting_after=now)
    recent = await booking_repo.recent_for_user(principal.user_id, recent_limit)
    return total, upcoming, recent

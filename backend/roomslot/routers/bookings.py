from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_consumer, get_principal, get_session
from ..domain.errors import ConflictError, ForbiddenError, NotFoundError
from ..domain.services import Principal
from ..infrastructure.repositories import SqlAlchemyBookingRepository, SqlAlchemySlotRepository
from ..infrastructure.transactions import run_in_transaction
from ..schemas import BookingCreate, BookingCreated, BookingRead, DashboardSummary, OkResponse
from ..usecases import bookings as booking_usecase
from ..utils.audit_log import emit_audit_log
from ..utils.time import local_now

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", response_model=BookingCreated, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_consumer),
) -> BookingCreated:
    slot_repo = SqlAlchemySlotRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        booking, slot, window, resource = await run_in_transaction(
            session,
            lambda: booking_usecase.book_slot(
                slot_repo,
                booking_repo,
                principal=principal,
                slot_id=payload.slot_id,
            ),
        )
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="slot not found")
    except ConflictError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="slot not available")
    except ForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))

    try:
        emit_audit_log(
            action="booking.created",
            initiator="consumer",
            user_id=principal.user_id,
            resource_id=resource.id,
            window_id=window.id,
            slot_id=slot.id,
            booking_id=booking.id,
            token_code=booking.token_code,
        )
    except RuntimeError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed")

    return BookingCreated(booking_id=booking.id, token_code=booking.token_code)


@router.get("", response_model=List[BookingRead])
async def list_bookings(
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_principal),
) -> list[BookingRead]:
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        rows = await booking_usecase.list_bookings(booking_repo, principal=principal)
    except ForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    return [
        BookingRead.from_db(booking=booking, slot=slot, window=window, resource=resource)
        for booking, slot, window, resource in rows
    ]


@router.get("/summary", response_model=DashboardSummary)
async def booking_summary(
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_consumer),
) -> DashboardSummary:
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        total, upcoming, recent = await booking_usecase.consumer_dashboard(
            booking_repo,
            principal=principal,
            now=local_now(get_settings().local_timezone),
        )
    except ForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    return DashboardSummary(
        total_bookings=total,
        upcoming_bookings=upcoming,
        recent_bookings=[
            BookingRead.from_db(booking=booking, slot=slot, window=window, resource=resource)
            for booking, slot, window, resource in recent
        ],
    )


@router.get("/token/{token_code}", response_model=BookingRead)
async def get_booking_by_token(
    token_code: str = Path(..., min_length=1, max_length=50),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_principal),
) -> BookingRead:
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        booking, slot, window, resource = await booking_usecase.get_booking_by_token(
            booking_repo,
            principal=principal,
            token_code=token_code,
        )
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="booking not found")
    except ForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    return BookingRead.from_db(booking=booking, slot=slot, window=window, resource=resource)


@router.delete("/{booking_id}", response_model=OkResponse)
async def cancel_booking(
    booking_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_principal),
) -> OkResponse:
    slot_repo = SqlAlchemySlotRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        booking = await run_in_transaction(
            session,
            lambda: booking_usecase.cancel_booking(
                slot_repo,
                booking_repo,
                principal=principal,
                booking_id=booking_id,
            ),
        )
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found or does not belong to you")
    except ForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))

    try:
        emit_audit_log(
            action="booking.cancelled",
            initiator="authority" if principal.is_authority else "consumer",
            user_id=principal.user_id,
            slot_id=booking.slot_id,
            booking_id=booking.id,
            token_code=booking.token_code,
            extra={"consumer_id": booking.user_id},
        )
    except RuntimeError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed")

    return OkResponse(message="Booking cancelled")

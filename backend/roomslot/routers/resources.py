from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_authority, get_session
from ..domain.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ..domain.services import Principal
from ..infrastructure.repositories import (
    SqlAlchemyResourceRepository,
    SqlAlchemySlotRepository,
    SqlAlchemyWindowRepository,
)
from ..infrastructure.transactions import run_in_transaction
from ..schemas import OkResponse, WindowCreate, WindowCreated, WindowRead
from ..usecases import windows as window_usecase
from ..utils.audit_log import emit_audit_log
from ..utils.time import local_today

router = APIRouter(prefix="/resources", tags=["resources"], dependencies=[Depends(get_authority)])


def _window_limits() -> dict[str, object]:
    settings = get_settings()
    return {
        "today": local_today(settings.local_timezone),
        "slot_duration": timedelta(minutes=settings.slot_minutes),
        "min_duration": timedelta(minutes=settings.min_window_minutes),
        "max_duration": timedelta(minutes=settings.max_window_minutes),
    }


def _audit(**kwargs: object) -> None:
    try:
        emit_audit_log(initiator="authority", **kwargs)  # type: ignore[arg-type]
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed") from exc


@router.post("/windows", response_model=WindowCreated, status_code=status.HTTP_201_CREATED)
async def create_window(
    payload: WindowCreate,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_authority),
) -> WindowCreated:
    resource_repo = SqlAlchemyResourceRepository(session)
    window_repo = SqlAlchemyWindowRepository(session)
    slot_repo = SqlAlchemySlotRepository(session)
    try:
        resource, window, slots_created = await run_in_transaction(
            session,
            lambda: window_usecase.create_resource_window(
                resource_repo,
                window_repo,
                slot_repo,
                principal=principal,
                label=payload.label,
                day=payload.date,
                start=payload.start,
                end=payload.end,
                **_window_limits(),  # type: ignore[arg-type]
            ),
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.details)
    except ConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except ForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))

    _audit(
        action="window.created",
        user_id=principal.user_id,
        resource_id=resource.id,
        window_id=window.id,
        extra={"label": resource.label, "date": window.day, "slots_created": slots_created},
    )
    return WindowCreated(
        resource_id=resource.id,
        window_id=window.id,
        label=resource.label,
        slots_created=slots_created,
    )


@router.get("/windows", response_model=List[WindowRead])
async def list_windows(
    label: Optional[str] = Query(default=None),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_authority),
) -> list[WindowRead]:
    window_repo = SqlAlchemyWindowRepository(session)
    rows = await window_usecase.list_windows(window_repo, principal=principal, label=label)
    return [
        WindowRead.from_db(window=window, resource=resource, total=total, booked=booked)
        for window, resource, total, booked in rows
    ]


@router.put("/windows/{window_id}", response_model=WindowCreated)
async def update_window(
    payload: WindowCreate,
    window_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_authority),
) -> WindowCreated:
    resource_repo = SqlAlchemyResourceRepository(session)
    window_repo = SqlAlchemyWindowRepository(session)
    slot_repo = SqlAlchemySlotRepository(session)
    try:
        resource, window, slots_created = await run_in_transaction(
            session,
            lambda: window_usecase.update_window(
                resource_repo,
                window_repo,
                slot_repo,
                principal=principal,
                window_id=window_id,
                label=payload.label,
                day=payload.date,
                start=payload.start,
                end=payload.end,
                **_window_limits(),  # type: ignore[arg-type]
            ),
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.details)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="window not found")
    except ConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    _audit(
        action="window.updated",
        user_id=principal.user_id,
        resource_id=resource.id,
        window_id=window.id,
        extra={"label": resource.label, "date": window.day, "slots_created": slots_created},
    )
    return WindowCreated(
        resource_id=resource.id,
        window_id=window.id,
        label=resource.label,
        slots_created=slots_created,
    )


@router.delete("/windows/{window_id}", response_model=OkResponse)
async def delete_window(
    window_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_authority),
) -> OkResponse:
    window_repo = SqlAlchemyWindowRepository(session)
    slot_repo = SqlAlchemySlotRepository(session)
    try:
        window, resource = await run_in_transaction(
            session,
            lambda: window_usecase.delete_window(window_repo, slot_repo, principal=principal, window_id=window_id),
        )
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="window not found")
    except ConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    _audit(action="window.deleted", user_id=principal.user_id, resource_id=resource.id, window_id=window.id)
    return OkResponse(message="Window and all its slots deleted")


@router.delete("/slots/{slot_id}", response_model=OkResponse)
async def delete_slot(
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_authority),
) -> OkResponse:
    slot_repo = SqlAlchemySlotRepository(session)
    try:
        await run_in_transaction(
            session,
            lambda: window_usecase.delete_slot(slot_repo, principal=principal, slot_id=slot_id),
        )
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="slot not found")
    except ConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    _audit(action="slot.deleted", user_id=principal.user_id, slot_id=slot_id)
    return OkResponse(message="Slot deleted")


@router.delete("/{resource_id}", response_model=OkResponse)
async def delete_resource(
    resource_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_authority),
) -> OkResponse:
    resource_repo = SqlAlchemyResourceRepository(session)
    window_repo = SqlAlchemyWindowRepository(session)
    slot_repo = SqlAlchemySlotRepository(session)
    try:
        resource, windows_deleted = await run_in_transaction(
            session,
            lambda: window_usecase.delete_resource(
                resource_repo,
                window_repo,
                slot_repo,
                principal=principal,
                resource_id=resource_id,
            ),
        )
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="resource not found")
    except ConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    _audit(
        action="resource.deleted",
        user_id=principal.user_id,
        resource_id=resource.id,
        extra={"label": resource.label, "windows_deleted": windows_deleted},
    )
    return OkResponse(message=f"Room {resource.label} and all its slots deleted")

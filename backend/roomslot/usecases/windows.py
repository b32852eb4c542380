import logging
from datetime import date, timedelta
from typing import List, Optional, Sequence

from ..domain.errors import ConflictError, NotFoundError
from ..domain.repositories import ResourceRepository, SlotRepository, WindowRepository, WindowSummary
from ..domain.services import Principal, require_role
from ..domain.slots import SLOT_DURATION, generate_slots
from ..domain.windows import (
    DEFAULT_MAX_DURATION,
    DEFAULT_MIN_DURATION,
    WindowSpec,
    find_overlap,
    is_same_interval,
    normalize_label,
    validate_window,
)
from ..models import Resource, Role, Window
from ..utils.time import format_hhmm

logger = logging.getLogger(__name__)


def _ensure_no_overlap(spec: WindowSpec, existing: Sequence[Window]) -> None:
    conflict = find_overlap(spec, existing)
    if conflict is None:
        return
    span = f"{format_hhmm(conflict.starts_at)} - {format_hhmm(conflict.ends_at)}"
    if is_same_interval(spec, conflict):
        raise ConflictError(f"Room {spec.label} already exists on {spec.day.isoformat()} ({span})", conflict)
    raise ConflictError(
        f"Time conflict with existing window for room {spec.label} ({span}). Please choose a different time.",
        conflict,
    )


async def _clear_free_slots(slot_repo: SlotRepository, window_ids: List[int], message: str) -> None:
    await slot_repo.delete_free_for_windows(window_ids)
    if await slot_repo.count_for_windows(window_ids) > 0:
        raise ConflictError(message)


async def create_resource_window(
    resource_repo: ResourceRepository,
    window_repo: WindowRepository,
    slot_repo: SlotRepository,
    *,
    principal: Principal,
    label: str,
    day: str,
    start: str,
    end: str,
    today: date,
    slot_duration: timedelta = SLOT_DURATION,
    min_duration: timedelta = DEFAULT_MIN_DURATION,
    max_duration: timedelta = DEFAULT_MAX_DURATION,
) -> tuple[Resource, Window, int]:
    require_role(principal, Role.AUTHORITY)
    spec = validate_window(label, day, start, end, today=today, min_duration=min_duration, max_duration=max_duration)

    # The resource row lock serializes window creation per label.
    resource = await resource_repo.get_or_create_for_update(label=spec.label, owner_id=principal.user_id)
    existing = await window_repo.list_for_resource_day(resource.id, spec.day)
    _ensure_no_overlap(spec, existing)

    window = await window_repo.create(
        resource_id=resource.id,
        day=spec.day,
        starts_at=spec.starts_at,
        ends_at=spec.ends_at,
        created_by=principal.user_id,
    )
    slots = await slot_repo.create_many(window.id, generate_slots(window.starts_at, window.ends_at, slot_duration))
    logger.info("window %s created for %s with %d slots", window.id, resource.label, len(slots))
    return resource, window, len(slots)


async def update_window(
    resource_repo: ResourceRepository,
    window_repo: WindowRepository,
    slot_repo: SlotRepository,
    *,
    principal: Principal,
    window_id: int,
    label: str,
    day: str,
    start: str,
    end: str,
    today: date,
    slot_duration: timedelta = SLOT_DURATION,
    min_duration: timedelta = DEFAULT_MIN_DURATION,
    max_duration: timedelta = DEFAULT_MAX_DURATION,
) -> tuple[Resource, Window, int]:
    """Move or resize a window with no bookings and regenerate its slots."""
    require_role(principal, Role.AUTHORITY)
    spec = validate_window(label, day, start, end, today=today, min_duration=min_duration, max_duration=max_duration)

    row = await window_repo.get_for_update(window_id)
    if row is None:
        raise NotFoundError("window not found")
    window, current = row

    await _clear_free_slots(
        slot_repo, [window.id], "Cannot update a window with active bookings. Cancel all bookings first."
    )

    resource = current if current.label == spec.label else await resource_repo.get_or_create_for_update(
        label=spec.label, owner_id=principal.user_id
    )
    existing = [w for w in await window_repo.list_for_resource_day(resource.id, spec.day) if w.id != window.id]
    _ensure_no_overlap(spec, existing)

    window = await window_repo.update(
        window,
        resource_id=resource.id,
        day=spec.day,
        starts_at=spec.starts_at,
        ends_at=spec.ends_at,
    )
    slots = await slot_repo.create_many(window.id, generate_slots(window.starts_at, window.ends_at, slot_duration))
    logger.info("window %s updated, %d slots regenerated", window.id, len(slots))
    return resource, window, len(slots)


async def delete_window(
    window_repo: WindowRepository,
    slot_repo: SlotRepository,
    *,
    principal: Principal,
    window_id: int,
) -> tuple[Window, Resource]:
    require_role(principal, Role.AUTHORITY)
    row = await window_repo.get_for_update(window_id)
    if row is None:
        raise NotFoundError("window not found")
    window, resource = row
    await _clear_free_slots(
        slot_repo, [window.id], "Cannot delete a window with booked slots. Cancel all bookings first."
    )
    await window_repo.delete(window)
    return window, resource


async def delete_resource(
    resource_repo: ResourceRepository,
    window_repo: WindowRepository,
    slot_repo: SlotRepository,
    *,
    principal: Principal,
    resource_id: int,
) -> tuple[Resource, int]:
    """Delete a resource with all of its windows and slots; returns the window count."""
    require_role(principal, Role.AUTHORITY)
    resource = await resource_repo.get_for_update(resource_id)
    if resource is None:
        raise NotFoundError("resource not found")
    windows = list(await window_repo.list_for_resource(resource.id))
    await _clear_free_slots(
        slot_repo,
        [w.id for w in windows],
        "Cannot delete a room with booked slots. Cancel all bookings first.",
    )
    for window in windows:
        await window_repo.delete(window)
    await resource_repo.delete(resource)
    return resource, len(windows)


async def delete_slot(
    slot_repo: SlotRepository,
    *,
    principal: Principal,
    slot_id: int,
) -> None:
    require_role(principal, Role.AUTHORITY)
    if await slot_repo.delete_if_free(slot_id):
        return
    if await slot_repo.get_with_context(slot_id) is None:
        raise NotFoundError("slot not found")
    raise ConflictError("Cannot delete a booked slot.")


async def list_windows(
    window_repo: WindowRepository,
    *,
    principal: Principal,
    label: Optional[str] = None,
) -> Sequence[WindowSummary]:
    require_role(principal, Role.AUTHORITY)
    return await window_repo.list_with_counts(normalize_label(label) if label else None)

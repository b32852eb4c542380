from datetime import date, datetime
from typing import Iterable, Optional, Sequence

import pytest
from roomslot.domain.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from roomslot.domain.services import Principal
from roomslot.domain.slots import SlotSpan
from roomslot.models import Resource, Role, Slot, Window
from roomslot.usecases import windows as uc

TODAY = date(2025, 3, 1)
AUTHORITY = Principal(user_id=10, role=Role.AUTHORITY)
CONSUMER = Principal(user_id=20, role=Role.CONSUMER)


def _now() -> datetime:
    return datetime(2025, 3, 1, 8, 0)


class FakeResourceRepo:
    def __init__(self) -> None:
        self.resources: dict[int, Resource] = {}

    async def get_for_update(self, resource_id: int) -> Optional[Resource]:
        return self.resources.get(resource_id)

    async def get_or_create_for_update(self, *, label: str, owner_id: int) -> Resource:
        existing = next((r for r in self.resources.values() if r.label == label), None)
        if existing is not None:
            return existing
        resource = Resource(
            id=len(self.resources) + 1,
            label=label,
            owner_id=owner_id,
            created_at=_now(),
            updated_at=_now(),
        )
        self.resources[resource.id] = resource
        return resource

    async def delete(self, resource: Resource) -> None:
        del self.resources[resource.id]


class FakeWindowRepo:
    def __init__(self, resources: FakeResourceRepo) -> None:
        self.resources = resources
        self.windows: dict[int, Window] = {}
        self._next_id = 1

    async def get_for_update(self, window_id: int) -> Optional[tuple[Window, Resource]]:
        window = self.windows.get(window_id)
        if window is None:
            return None
        return window, self.resources.resources[window.resource_id]

    async def list_for_resource_day(self, resource_id: int, day: date) -> list[Window]:
        found = [w for w in self.windows.values() if w.resource_id == resource_id and w.day == day]
        return sorted(found, key=lambda w: w.starts_at)

    async def list_for_resource(self, resource_id: int) -> list[Window]:
        return [w for w in self.windows.values() if w.resource_id == resource_id]

    async def list_with_counts(self, label: Optional[str] = None) -> list[tuple[Window, Resource, int, int]]:
        rows = []
        for window in self.windows.values():
            resource = self.resources.resources[window.resource_id]
            if label is None or resource.label == label:
                rows.append((window, resource, 0, 0))
        return rows

    async def create(
        self,
        *,
        resource_id: int,
        day: date,
        starts_at: datetime,
        ends_at: datetime,
        created_by: int,
    ) -> Window:
        window = Window(
            id=self._next_id,
            resource_id=resource_id,
            day=day,
            starts_at=starts_at,
            ends_at=ends_at,
            created_by=created_by,
            created_at=_now(),
            updated_at=_now(),
        )
        self._next_id += 1
        self.windows[window.id] = window
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
        return window

    async def delete(self, window: Window) -> None:
        del self.windows[window.id]


class FakeSlotRepo:
    def __init__(self) -> None:
        self.slots: list[Slot] = []
        self._next_id = 1

    async def create_many(self, window_id: int, spans: Iterable[SlotSpan]) -> list[Slot]:
        created = []
        for span in spans:
            slot = Slot(
                id=self._next_id,
                window_id=window_id,
                starts_at=span.starts_at,
                ends_at=span.ends_at,
                booked=False,
                created_at=_now(),
                updated_at=_now(),
            )
            created.append(slot)
            self._next_id += 1
        self.slots.extend(created)
        return created

    async def delete_free_for_windows(self, window_ids: Sequence[int]) -> int:
        before = len(self.slots)
        self.slots = [s for s in self.slots if not (s.window_id in window_ids and not s.booked)]
        return before - len(self.slots)

    async def count_for_windows(self, window_ids: Sequence[int]) -> int:
        return sum(1 for s in self.slots if s.window_id in window_ids)

    async def delete_if_free(self, slot_id: int) -> bool:
        for slot in self.slots:
            if slot.id == slot_id and not slot.booked:
                self.slots.remove(slot)
                return True
        return False

    async def get_with_context(self, slot_id: int) -> Optional[tuple[Slot, None, None]]:
        slot = next((s for s in self.slots if s.id == slot_id), None)
        return None if slot is None else (slot, None, None)


@pytest.fixture
def repos() -> tuple[FakeResourceRepo, FakeWindowRepo, FakeSlotRepo]:
    resources = FakeResourceRepo()
    return resources, FakeWindowRepo(resources), FakeSlotRepo()


async def _create(repos, label: str = "A1", start: str = "10:00", end: str = "11:00", day: str = "2025-03-10"):
    resource_repo, window_repo, slot_repo = repos
    return await uc.create_resource_window(
        resource_repo,
        window_repo,
        slot_repo,
        principal=AUTHORITY,
        label=label,
        day=day,
        start=start,
        end=end,
        today=TODAY,
    )


@pytest.mark.asyncio
async def test_create_window_generates_slots(repos) -> None:
    resource, window, slots_created = await _create(repos)
    assert resource.label == "A1"
    assert resource.owner_id == AUTHORITY.user_id
    assert window.starts_at == datetime(2025, 3, 10, 10, 0)
    assert slots_created == 2
    assert [s.starts_at.strftime("%H:%M") for s in repos[2].slots] == ["10:00", "10:30"]


@pytest.mark.asyncio
async def test_create_window_rejects_overlap_on_same_label_and_day(repos) -> None:
    await _create(repos)
    with pytest.raises(ConflictError) as excinfo:
        await _create(repos, start="10:45", end="11:15")
    assert "10:00 - 11:00" in str(excinfo.value)
    assert len(repos[1].windows) == 1


@pytest.mark.asyncio
async def test_create_window_reports_identical_window_as_duplicate(repos) -> None:
    await _create(repos)
    with pytest.raises(ConflictError) as excinfo:
        await _create(repos, label="a1")
    assert "already exists" in str(excinfo.value)


@pytest.mark.asyncio
async def test_create_window_allows_back_to_back_and_other_rooms(repos) -> None:
    first_resource, _, _ = await _create(repos)
    resource, _, slots_created = await _create(repos, start="11:00", end="12:00")
    assert resource is first_resource
    assert slots_created == 2
    other, _, _ = await _create(repos, label="B2", start="10:15", end="10:45")
    assert other.id != first_resource.id
    await _create(repos, day="2025-03-11", start="10:15", end="10:45")
    assert len(repos[1].windows) == 4


@pytest.mark.asyncio
async def test_create_window_requires_authority(repos) -> None:
    resource_repo, window_repo, slot_repo = repos
    with pytest.raises(ForbiddenError):
        await uc.create_resource_window(
            resource_repo,
            window_repo,
            slot_repo,
            principal=CONSUMER,
            label="A1",
            day="2025-03-10",
            start="10:00",
            end="11:00",
            today=TODAY,
        )


@pytest.mark.asyncio
async def test_create_window_validates_before_touching_store(repos) -> None:
    with pytest.raises(ValidationError):
        await _create(repos, start="10:00", end="10:15")
    assert repos[0].resources == {}


@pytest.mark.asyncio
async def test_delete_window_rejected_while_slot_booked(repos) -> None:
    _, window, _ = await _create(repos)
    repos[2].slots[0].booked = True
    with pytest.raises(ConflictError):
        await uc.delete_window(repos[1], repos[2], principal=AUTHORITY, window_id=window.id)


@pytest.mark.asyncio
async def test_delete_window_removes_slots(repos) -> None:
    _, window, _ = await _create(repos)
    await uc.delete_window(repos[1], repos[2], principal=AUTHORITY, window_id=window.id)
    assert repos[1].windows == {}
    assert repos[2].slots == []


@pytest.mark.asyncio
async def test_delete_window_missing(repos) -> None:
    with pytest.raises(NotFoundError):
        await uc.delete_window(repos[1], repos[2], principal=AUTHORITY, window_id=99)


@pytest.mark.asyncio
async def test_delete_resource_removes_every_window(repos) -> None:
    resource, _, _ = await _create(repos)
    await _create(repos, start="13:00", end="14:00")
    deleted, windows_deleted = await uc.delete_resource(*repos, principal=AUTHORITY, resource_id=resource.id)
    assert deleted is resource
    assert windows_deleted == 2
    assert repos[0].resources == {}
    assert repos[2].slots == []


@pytest.mark.asyncio
async def test_delete_resource_rejected_while_slot_booked(repos) -> None:
    resource, _, _ = await _create(repos)
    repos[2].slots[1].booked = True
    with pytest.raises(ConflictError):
        await uc.delete_resource(*repos, principal=AUTHORITY, resource_id=resource.id)


@pytest.mark.asyncio
async def test_update_window_regenerates_slots(repos) -> None:
    _, window, _ = await _create(repos)
    await _create(repos, start="12:00", end="13:00")
    resource, updated, slots_created = await uc.update_window(
        *repos,
        principal=AUTHORITY,
        window_id=window.id,
        label="A1",
        day="2025-03-10",
        start="09:00",
        end="10:30",
        today=TODAY,
    )
    assert updated.starts_at == datetime(2025, 3, 10, 9, 0)
    assert slots_created == 3
    assert sum(1 for s in repos[2].slots if s.window_id == window.id) == 3


@pytest.mark.asyncio
async def test_update_window_ignores_itself_but_not_siblings(repos) -> None:
    _, window, _ = await _create(repos)
    await _create(repos, start="12:00", end="13:00")
    await uc.update_window(
        *repos, principal=AUTHORITY, window_id=window.id, label="A1",
        day="2025-03-10", start="10:30", end="11:30", today=TODAY,
    )
    with pytest.raises(ConflictError):
        await uc.update_window(
            *repos, principal=AUTHORITY, window_id=window.id, label="A1",
            day="2025-03-10", start="11:30", end="12:30", today=TODAY,
        )


@pytest.mark.asyncio
async def test_update_window_rejected_while_booked(repos) -> None:
    _, window, _ = await _create(repos)
    repos[2].slots[0].booked = True
    with pytest.raises(ConflictError):
        await uc.update_window(
            *repos, principal=AUTHORITY, window_id=window.id, label="A1",
            day="2025-03-10", start="14:00", end="15:00", today=TODAY,
        )


@pytest.mark.asyncio
async def test_delete_slot_paths(repos) -> None:
    await _create(repos)
    free, booked = repos[2].slots
    booked.booked = True
    await uc.delete_slot(repos[2], principal=AUTHORITY, slot_id=free.id)
    with pytest.raises(ConflictError):
        await uc.delete_slot(repos[2], principal=AUTHORITY, slot_id=booked.id)
    with pytest.raises(NotFoundError):
        await uc.delete_slot(repos[2], principal=AUTHORITY, slot_id=free.id)


@pytest.mark.asyncio
async def test_list_windows_normalizes_label(repos) -> None:
    await _create(repos)
    await _create(repos, label="B2")
    rows = await uc.list_windows(repos[1], principal=AUTHORITY, label=" a1")
    assert [resource.label for _, resource, _, _ in rows] == ["A1"]

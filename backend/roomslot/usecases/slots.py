from datetime import date
from typing import Optional, Sequence

from ..domain.repositories import SlotRepository, SlotRow
from ..domain.windows import normalize_label


async def list_available_slots(
    slot_repo: SlotRepository,
    *,
    label: Optional[str] = None,
    day: Optional[date] = None,
) -> Sequence[SlotRow]:
    """Free slots only; every call re-reads the store."""
    return await slot_repo.list_available(
        label=normalize_label(label) if label else None,
        day=day,
    )

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List

SLOT_DURATION = timedelta(minutes=30)


@dataclass(frozen=True)
class SlotSpan:
    starts_at: datetime
    ends_at: datetime


def generate_slots(
    starts_at: datetime,
    ends_at: datetime,
    duration: timedelta = SLOT_DURATION,
) -> List[SlotSpan]:
    """
    Partition ``[starts_at, ends_at)`` into contiguous slots of ``duration``.
    A trailing remainder shorter than ``duration`` is dropped.
    """
    if duration <= timedelta(0):
        raise ValueError("slot duration must be positive")
    spans: List[SlotSpan] = []
    cursor = starts_at
    while cursor + duration <= ends_at:
        spans.append(SlotSpan(starts_at=cursor, ends_at=cursor + duration))
        cursor += duration
    return spans

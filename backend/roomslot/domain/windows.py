from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional, Protocol, TypeVar

from .errors import ValidationError

LABEL_PATTERN = re.compile(r"^[A-Za-z0-9 \-_]{2,20}$")
TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

DEFAULT_MIN_DURATION = timedelta(minutes=30)
DEFAULT_MAX_DURATION = timedelta(hours=8)


class Interval(Protocol):
    starts_at: datetime
    ends_at: datetime


IntervalT = TypeVar("IntervalT", bound=Interval)


@dataclass(frozen=True)
class WindowSpec:
    label: str
    day: date
    starts_at: datetime
    ends_at: datetime

    @property
    def duration(self) -> timedelta:
        return self.ends_at - self.starts_at


def normalize_label(label: str) -> str:
    return label.strip().upper()


def _parse_day(raw: str) -> Optional[date]:
    raw = raw.strip()
    # fromisoformat also takes compact and week dates
    if not DATE_PATTERN.match(raw):
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        return None


def _parse_time(raw: str) -> Optional[time]:
    match = TIME_PATTERN.match(raw.strip())
    if match is None:
        return None
    return time(int(match.group(1)), int(match.group(2)))


def validate_window(
    label: str,
    day: str,
    start: str,
    end: str,
    *,
    today: date,
    min_duration: timedelta = DEFAULT_MIN_DURATION,
    max_duration: timedelta = DEFAULT_MAX_DURATION,
) -> WindowSpec:
    """
    Validate a proposed availability window and return its normalized form.

    Times are naive local wall-clock values for the resource's locale. Every
    failed rule is reported in ``ValidationError.details``.
    """
    errors: list[str] = []

    clean_label = (label or "").strip()
    if not LABEL_PATTERN.match(clean_label):
        errors.append(
            "Room label must be 2-20 characters and contain only letters, numbers, "
            "spaces, hyphens, or underscores"
        )

    parsed_day = _parse_day(day or "")
    if parsed_day is None:
        errors.append("Invalid date format, expected YYYY-MM-DD")
    elif parsed_day < today:
        errors.append("Cannot create windows for past dates")

    start_time = _parse_time(start or "")
    end_time = _parse_time(end or "")
    if start_time is None or end_time is None:
        errors.append("Time must be in HH:MM format (24-hour)")

    if parsed_day is not None and start_time is not None and end_time is not None:
        starts_at = datetime.combine(parsed_day, start_time)
        ends_at = datetime.combine(parsed_day, end_time)
        if starts_at >= ends_at:
            errors.append("End time must be after start time")
        elif ends_at - starts_at < min_duration:
            errors.append(f"Window duration must be at least {_minutes(min_duration)} minutes")
        elif ends_at - starts_at > max_duration:
            errors.append(f"Window duration cannot exceed {_minutes(max_duration)} minutes")

    if errors:
        raise ValidationError("Validation failed", errors)

    assert parsed_day is not None and start_time is not None and end_time is not None
    return WindowSpec(
        label=normalize_label(clean_label),
        day=parsed_day,
        starts_at=datetime.combine(parsed_day, start_time),
        ends_at=datetime.combine(parsed_day, end_time),
    )


def overlaps(first: Interval, second: Interval) -> bool:
    # Half-open intervals: back-to-back windows do not overlap.
    return first.starts_at < second.ends_at and second.starts_at < first.ends_at


def find_overlap(candidate: Interval, existing: Iterable[IntervalT]) -> Optional[IntervalT]:
    """Return the first existing interval that conflicts with ``candidate``."""
    for other in existing:
        if overlaps(candidate, other):
            return other
    return None


def is_same_interval(first: Interval, second: Interval) -> bool:
    return first.starts_at == second.starts_at and first.ends_at == second.ends_at


def _minutes(delta: timedelta) -> int:
    return int(delta.total_seconds() // 60)

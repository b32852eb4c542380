from __future__ import annotations

from typing import Any, Sequence


class BookingError(Exception):
    """Base class for errors raised by the booking core."""


class ValidationError(BookingError):
    def __init__(self, message: str, details: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.details = list(details) or [message]


class ConflictError(BookingError):
    def __init__(self, message: str, conflicting: Any = None) -> None:
        super().__init__(message)
        self.conflicting = conflicting


class NotFoundError(BookingError):
    pass


class ForbiddenError(BookingError):
    pass


class Unauthenticated(BookingError):
    pass


class StoreError(BookingError):
    """Persistence failure that no retry could recover."""


class InconsistentStateError(BookingError):
    """Slot and booking state disagree; never recovered automatically."""


class TokenCollisionError(InconsistentStateError):
    pass

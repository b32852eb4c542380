from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..models import Role
from .errors import ForbiddenError

SESSION_TTL = timedelta(hours=24)


@dataclass(frozen=True)
class Principal:
    """Identity resolved from a session, produced once per request."""

    user_id: int
    role: Role

    @property
    def is_authority(self) -> bool:
        return self.role == Role.AUTHORITY

    @property
    def is_consumer(self) -> bool:
        return self.role == Role.CONSUMER


def require_role(principal: Principal, *roles: Role) -> Principal:
    if principal.role not in roles:
        allowed = ", ".join(r.value for r in roles)
        raise ForbiddenError(f"role {principal.role.value} not permitted (requires {allowed})")
    return principal


def booking_owner_scope(principal: Principal) -> Optional[int]:
    """
    Return the consumer id bookings must belong to for this principal, or None
    when the principal may see every booking.

    Authorities are not restricted to bookings on resources they own.
    """
    if principal.is_consumer:
        return principal.user_id
    if principal.is_authority:
        return None
    raise ForbiddenError("role not permitted to access bookings")


def is_session_expired(created_at: datetime, now: datetime, ttl: timedelta = SESSION_TTL) -> bool:
    return now - created_at > ttl

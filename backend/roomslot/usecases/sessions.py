import logging
from datetime import datetime, timedelta
from typing import Optional

from ..domain.errors import ConflictError, Unauthenticated, ValidationError
from ..domain.repositories import SessionRepository, UserRepository
from ..domain.services import SESSION_TTL, Principal, is_session_expired, require_role
from ..models import Role, Session, User
from ..utils.auth import generate_session_handle, hash_password, verify_password

logger = logging.getLogger(__name__)


async def register_user(
    user_repo: UserRepository,
    *,
    email: str,
    name: str,
    password: str,
    role: Role,
) -> User:
    email = email.strip().lower()
    name = name.strip()
    errors = []
    if "@" not in email:
        errors.append("A valid email is required")
    if not name:
        errors.append("Name is required")
    if len(password) < 8:
        errors.append("Password must be at least 8 characters")
    if errors:
        raise ValidationError("Validation failed", errors)

    if await user_repo.get_by_email(email) is not None:
        raise ConflictError("User already exists")
    return await user_repo.create(email=email, name=name, password_hash=hash_password(password), role=role)


async def login(
    user_repo: UserRepository,
    session_repo: SessionRepository,
    *,
    email: str,
    password: str,
    now: datetime,
) -> tuple[Session, User]:
    user = await user_repo.get_by_email(email.strip().lower())
    if user is None or not verify_password(password, user.password_hash):
        raise Unauthenticated("Invalid credentials")
    session = await session_repo.create(
        handle=generate_session_handle(),
        user_id=user.id,
        role=user.role,
        created_at=now,
    )
    return session, user


async def logout(session_repo: SessionRepository, *, handle: Optional[str]) -> bool:
    if not handle:
        return False
    return await session_repo.delete(handle)


async def resolve_session(
    session_repo: SessionRepository,
    *,
    handle: Optional[str],
    now: datetime,
    ttl: timedelta = SESSION_TTL,
) -> Optional[Principal]:
    """
    Look a session handle up. Expired sessions are deleted here, so callers
    must commit even when None is returned.
    """
    if not handle:
        return None
    session = await session_repo.get(handle)
    if session is None:
        return None
    if is_session_expired(session.created_at, now, ttl):
        await session_repo.delete(handle)
        logger.info("purged expired session for user %s", session.user_id)
        return None
    return Principal(user_id=session.user_id, role=session.role)


def authorize(principal: Optional[Principal], *roles: Role) -> Principal:
    if principal is None:
        raise Unauthenticated("Authentication required")
    if roles:
        require_role(principal, *roles)
    return principal

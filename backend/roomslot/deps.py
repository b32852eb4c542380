from datetime import timedelta
from typing import AsyncIterator, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .database import async_session
from .domain.errors import ForbiddenError, StoreError, Unauthenticated
from .domain.services import Principal, require_role
from .infrastructure.repositories import SqlAlchemySessionRepository
from .infrastructure.transactions import run_in_transaction
from .models import Role
from .usecases import sessions as session_usecase
from .utils.time import utc_now_naive


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


async def get_session_handle(
    request: Request,
    x_session_id: str | None = Header(default=None),
) -> Optional[str]:
    """Session handle from the cookie, falling back to the X-Session-Id header."""
    return request.cookies.get(get_settings().session_cookie_name) or x_session_id


async def get_principal(
    handle: Optional[str] = Depends(get_session_handle),
    session: AsyncSession = Depends(get_session),
) -> Principal:
    settings = get_settings()
    repo = SqlAlchemySessionRepository(session)
    try:
        # Committed even on expiry so the purge sticks.
        principal = await run_in_transaction(
            session,
            lambda: session_usecase.resolve_session(
                repo,
                handle=handle,
                now=utc_now_naive(),
                ttl=timedelta(hours=settings.session_ttl_hours),
            ),
        )
        return session_usecase.authorize(principal)
    except Unauthenticated as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except StoreError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="session store unavailable") from exc


def _require(principal: Principal, role: Role) -> Principal:
    try:
        return require_role(principal, role)
    except ForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc


async def get_authority(principal: Principal = Depends(get_principal)) -> Principal:
    return _require(principal, Role.AUTHORITY)


async def get_consumer(principal: Principal = Depends(get_principal)) -> Principal:
    return _require(principal, Role.CONSUMER)

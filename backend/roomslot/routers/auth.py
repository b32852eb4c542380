from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_principal, get_session, get_session_handle
from ..domain.errors import ConflictError, Unauthenticated, ValidationError
from ..domain.services import Principal
from ..infrastructure.repositories import SqlAlchemySessionRepository, SqlAlchemyUserRepository
from ..infrastructure.transactions import run_in_transaction
from ..schemas import LoginRequest, OkResponse, RegisterRequest, UserRead, WhoAmI
from ..usecases import sessions as session_usecase
from ..utils.audit_log import emit_audit_log
from ..utils.time import utc_now_naive

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    session: AsyncSession = Depends(get_session),
) -> UserRead:
    user_repo = SqlAlchemyUserRepository(session)
    try:
        user = await run_in_transaction(
            session,
            lambda: session_usecase.register_user(
                user_repo,
                email=payload.email,
                name=payload.name,
                password=payload.password,
                role=payload.role,
            ),
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.details)
    except ConflictError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User already exists")
    return UserRead.from_db(user=user)


@router.post("/login", response_model=WhoAmI)
async def login(
    payload: LoginRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
) -> WhoAmI:
    settings = get_settings()
    user_repo = SqlAlchemyUserRepository(session)
    session_repo = SqlAlchemySessionRepository(session)
    try:
        record, user = await run_in_transaction(
            session,
            lambda: session_usecase.login(
                user_repo,
                session_repo,
                email=payload.email,
                password=payload.password,
                now=utc_now_naive(),
            ),
        )
    except Unauthenticated:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    try:
        emit_audit_log(action="session.created", initiator=user.role.value, user_id=user.id)  # type: ignore[arg-type]
    except RuntimeError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed")

    response.set_cookie(
        settings.session_cookie_name,
        record.handle,
        max_age=settings.session_ttl_hours * 3600,
        httponly=True,
        path="/",
    )
    return WhoAmI(user_id=user.id, role=user.role)


@router.post("/logout", response_model=OkResponse)
async def logout(
    response: Response,
    handle: Optional[str] = Depends(get_session_handle),
    session: AsyncSession = Depends(get_session),
) -> OkResponse:
    session_repo = SqlAlchemySessionRepository(session)
    removed = await run_in_transaction(session, lambda: session_usecase.logout(session_repo, handle=handle))
    if removed:
        try:
            emit_audit_log(action="session.deleted", initiator="system", user_id=None)
        except RuntimeError:
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed")
    response.delete_cookie(get_settings().session_cookie_name, path="/")
    return OkResponse(message="Logged out")


@router.get("/me", response_model=WhoAmI)
async def whoami(principal: Principal = Depends(get_principal)) -> WhoAmI:
    return WhoAmI(user_id=principal.user_id, role=principal.role)

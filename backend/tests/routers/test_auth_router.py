from datetime import datetime
from typing import Any, cast

import pytest
from fastapi import HTTPException, Response
from roomslot.domain.errors import ConflictError, Unauthenticated
from roomslot.models import Role, Session, User
from roomslot.routers import auth as router
from roomslot.schemas import LoginRequest, RegisterRequest
from sqlalchemy.ext.asyncio import AsyncSession

NOW = datetime(2025, 3, 10, 12, 0)


class DummySession:
    async def __aenter__(self) -> "DummySession":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False

    def begin(self) -> "DummySession":
        return self


def _user() -> User:
    return User(
        id=4,
        email="bo@example.com",
        name="Bo",
        password_hash="x",
        role=Role.CONSUMER,
        created_at=NOW,
        updated_at=NOW,
    )


@pytest.fixture(autouse=True)
def _no_repositories(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(router, "SqlAlchemyUserRepository", lambda s: s)
    monkeypatch.setattr(router, "SqlAlchemySessionRepository", lambda s: s)


@pytest.mark.asyncio
async def test_login_sets_http_only_session_cookie(monkeypatch: pytest.MonkeyPatch) -> None:
    user = _user()
    record = Session(handle="ab" * 16, user_id=user.id, role=user.role, created_at=NOW)

    async def fake_login(*args: object, **kwargs: object) -> tuple[Session, User]:
        return record, user

    calls: list[dict[str, Any]] = []
    monkeypatch.setattr(router.session_usecase, "login", fake_login)
    monkeypatch.setattr(router, "emit_audit_log", lambda **kwargs: calls.append(kwargs))

    response = Response()
    result = await router.login(
        payload=LoginRequest(email="bo@example.com", password="password1"),
        response=response,
        session=cast(AsyncSession, DummySession()),
    )

    assert result.user_id == 4
    cookie = response.headers["set-cookie"]
    assert cookie.startswith(f"sessionId={'ab' * 16}")
    assert "HttpOnly" in cookie
    assert "Max-Age=86400" in cookie
    assert calls[0]["action"] == "session.created"
    assert calls[0]["initiator"] == "consumer"


@pytest.mark.asyncio
async def test_login_rejects_bad_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_login(*args: object, **kwargs: object) -> None:
        raise Unauthenticated("Invalid credentials")

    monkeypatch.setattr(router.session_usecase, "login", fake_login)

    response = Response()
    with pytest.raises(HTTPException) as excinfo:
        await router.login(
            payload=LoginRequest(email="bo@example.com", password="nope"),
            response=response,
            session=cast(AsyncSession, DummySession()),
        )
    assert excinfo.value.status_code == 401
    assert "set-cookie" not in response.headers


@pytest.mark.asyncio
async def test_register_duplicate_maps_to_409(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_register(*args: object, **kwargs: object) -> None:
        raise ConflictError("User already exists")

    monkeypatch.setattr(router.session_usecase, "register_user", fake_register)

    payload = RegisterRequest(email="bo@example.com", name="Bo", password="password1", role=Role.CONSUMER)
    with pytest.raises(HTTPException) as excinfo:
        await router.register(payload=payload, session=cast(AsyncSession, DummySession()))
    assert excinfo.value.status_code == 409


@pytest.mark.asyncio
async def test_logout_clears_cookie(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_logout(*args: object, **kwargs: object) -> bool:
        return True

    calls: list[dict[str, Any]] = []
    monkeypatch.setattr(router.session_usecase, "logout", fake_logout)
    monkeypatch.setattr(router, "emit_audit_log", lambda **kwargs: calls.append(kwargs))

    response = Response()
    result = await router.logout(response=response, handle="ab" * 16, session=cast(AsyncSession, DummySession()))
    assert result.ok is True
    assert response.headers["set-cookie"].startswith('sessionId=""')
    assert calls[0]["action"] == "session.deleted"

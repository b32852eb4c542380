from typing import Callable

import pytest
from roomslot.domain.errors import ConflictError, NotFoundError, StoreError
from roomslot.infrastructure.transactions import run_in_transaction
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError


class DummyTransaction:
    def __init__(self, session: "DummySession") -> None:
        self.session = session

    async def __aenter__(self) -> "DummyTransaction":
        self.session.begun += 1
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        if exc_type is None:
            self.session.commits += 1
        else:
            self.session.rollbacks += 1
        return False


class DummySession:
    def __init__(self) -> None:
        self.begun = 0
        self.commits = 0
        self.rollbacks = 0

    def begin(self) -> DummyTransaction:
        return DummyTransaction(self)


def _flaky(failures: int, error: Callable[[], Exception]):
    calls = {"n": 0}

    async def work() -> str:
        calls["n"] += 1
        if calls["n"] <= failures:
            raise error()
        return "done"

    return work, calls


def _operational() -> Exception:
    return OperationalError("UPDATE slots", None, Exception("lost connection"))


@pytest.mark.asyncio
async def test_commits_successful_work() -> None:
    session = DummySession()
    work, calls = _flaky(0, _operational)
    assert await run_in_transaction(session, work, attempts=3, backoff_seconds=0) == "done"  # type: ignore[arg-type]
    assert calls["n"] == 1
    assert session.commits == 1


@pytest.mark.asyncio
async def test_retries_transient_failures() -> None:
    session = DummySession()
    work, calls = _flaky(2, _operational)
    assert await run_in_transaction(session, work, attempts=3, backoff_seconds=0) == "done"  # type: ignore[arg-type]
    assert calls["n"] == 3
    assert session.rollbacks == 2
    assert session.commits == 1


@pytest.mark.asyncio
async def test_gives_up_after_bounded_attempts() -> None:
    session = DummySession()
    work, calls = _flaky(10, _operational)
    with pytest.raises(StoreError):
        await run_in_transaction(session, work, attempts=3, backoff_seconds=0)  # type: ignore[arg-type]
    assert calls["n"] == 3
    assert session.commits == 0


@pytest.mark.asyncio
async def test_constraint_violation_is_conflict_without_retry() -> None:
    session = DummySession()
    work, calls = _flaky(1, lambda: IntegrityError("INSERT INTO bookings", None, Exception("duplicate")))
    with pytest.raises(ConflictError):
        await run_in_transaction(session, work, attempts=3, backoff_seconds=0)  # type: ignore[arg-type]
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_non_transient_store_error_is_not_retried() -> None:
    session = DummySession()
    work, calls = _flaky(1, lambda: ProgrammingError("SELECT", None, Exception("no such table")))
    with pytest.raises(StoreError):
        await run_in_transaction(session, work, attempts=3, backoff_seconds=0)  # type: ignore[arg-type]
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_domain_errors_roll_back_and_propagate() -> None:
    session = DummySession()
    work, calls = _flaky(1, lambda: NotFoundError("slot not found"))
    with pytest.raises(NotFoundError):
        await run_in_transaction(session, work, attempts=3, backoff_seconds=0)  # type: ignore[arg-type]
    assert calls["n"] == 1
    assert session.rollbacks == 1

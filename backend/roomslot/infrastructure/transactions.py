from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..domain.errors import ConflictError, StoreError

T = TypeVar("T")

logger = logging.getLogger(__name__)


def _is_transient(exc: DBAPIError) -> bool:
    return isinstance(exc, OperationalError) or exc.connection_invalidated


async def run_in_transaction(
    session: AsyncSession,
    work: Callable[[], Awaitable[T]],
    *,
    attempts: int | None = None,
    backoff_seconds: float | None = None,
) -> T:
    """
    Run ``work`` inside one transaction on ``session`` and commit it.

    Any exception rolls the whole transaction back. Transient store failures
    are retried with linear backoff; constraint violations are not retried and
    surface as ``ConflictError``. Domain errors raised by ``work`` propagate
    unchanged.
    """
    settings = get_settings()
    max_attempts = attempts if attempts is not None else settings.store_retry_attempts
    backoff = backoff_seconds if backoff_seconds is not None else settings.store_retry_backoff_seconds

    attempt = 0
    while True:
        attempt += 1
        try:
            async with session.begin():
                return await work()
        except IntegrityError as exc:
            raise ConflictError("store constraint violated") from exc
        except DBAPIError as exc:
            if not _is_transient(exc):
                raise StoreError("store request failed") from exc
            if attempt >= max_attempts:
                logger.error("store unavailable after %d attempts: %s", attempt, exc)
                raise StoreError("store unavailable") from exc
            logger.warning("transient store error (attempt %d/%d): %s", attempt, max_attempts, exc)
            await asyncio.sleep(backoff * attempt)

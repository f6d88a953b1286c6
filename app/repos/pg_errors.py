"""Translate SQLAlchemy failures into engine error kinds."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.services.errors import ConflictRetryable, PersistenceUnavailableError


@asynccontextmanager
async def storage_errors() -> AsyncIterator[None]:
    """Connection-level failures become PersistenceUnavailableError."""
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        raise PersistenceUnavailableError("storage unavailable") from e


@asynccontextmanager
async def guarded_insert(session: AsyncSession, what: str) -> AsyncIterator[None]:
    """Run inserts inside a SAVEPOINT and map unique violations to
    ConflictRetryable.

    The savepoint keeps the surrounding transaction usable after the
    violation, so the caller can read the row that won the race.
    """
    try:
        async with storage_errors():
            async with session.begin_nested():
                yield
    except IntegrityError as e:
        raise ConflictRetryable(f"{what} already exists") from e

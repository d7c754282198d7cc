"""
Unit-of-work helpers shared by the lifecycle services.

Every write operation opens its own session, holds the entity lock across
read, validate, write and commit, and translates a lost optimistic update
into ``ConflictError``.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Generator
from uuid import UUID

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from settlement_kernel.exceptions import ConflictError
from settlement_kernel.logging_config import get_logger

logger = get_logger("services.transaction")

SessionFactory = Callable[[], Session]


@contextmanager
def transaction(
    session_factory: SessionFactory,
    entity_type: str = "entity",
    entity_id: UUID | str | None = None,
) -> Generator[Session, None, None]:
    """
    Commit on normal exit, roll back on any exception.

    Raises:
        ConflictError: When a versioned row changed since it was read.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except StaleDataError as exc:
        session.rollback()
        logger.warning(
            "optimistic_conflict",
            extra={"conflict_entity_type": entity_type, "conflict_entity_id": str(entity_id)},
        )
        raise ConflictError(entity_type, str(entity_id), "version changed since read") from exc
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def read_only(session_factory: SessionFactory) -> Generator[Session, None, None]:
    """Session for queries; never commits."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()

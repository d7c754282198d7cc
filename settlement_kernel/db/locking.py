"""
Module: settlement_kernel.db.locking
Responsibility: In-process mutual exclusion per (entity type, entity id).
    Every check-then-act lifecycle operation holds the lock for its entity
    from the initial read through commit.
Architecture position: Kernel > DB.  No imports beyond exceptions/logging.

Invariants enforced:
    - At most one holder per (entity_type, entity_id) at a time.
    - Locks for different entities never contend.
    - Acquisition is bounded by a timeout; nobody waits forever.
    - Entries are reference counted and dropped once unused, so the registry
      does not grow with the number of entities ever touched.

Failure modes:
    - ConflictError when the lock cannot be acquired within the timeout.

Cross-process safety comes from the row ``version`` column and, on
PostgreSQL, SELECT ... FOR UPDATE; this registry only serializes threads
within one process.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Generator
from uuid import UUID

from settlement_kernel.exceptions import ConflictError
from settlement_kernel.logging_config import get_logger

logger = get_logger("db.locking")


@dataclass
class _Entry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    refs: int = 0


class EntityLockRegistry:
    """Registry of per-entity mutexes."""

    def __init__(self, timeout_seconds: float = 10.0) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self._timeout = timeout_seconds
        self._guard = threading.Lock()
        self._entries: dict[tuple[str, str], _Entry] = {}

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def _checkout(self, key: tuple[str, str]) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.refs += 1
            return entry

    def _checkin(self, key: tuple[str, str], entry: _Entry) -> None:
        with self._guard:
            entry.refs -= 1
            if entry.refs == 0:
                self._entries.pop(key, None)

    @contextmanager
    def hold(
        self,
        entity_type: str,
        entity_id: UUID | str,
        timeout: float | None = None,
    ) -> Generator[None, None, None]:
        """Hold the lock for one entity for the duration of the block.

        Raises:
            ConflictError: If the lock is not acquired within the timeout.
        """
        key = (entity_type, str(entity_id))
        wait = self._timeout if timeout is None else timeout
        entry = self._checkout(key)
        try:
            if not entry.lock.acquire(timeout=wait):
                logger.warning(
                    "entity_lock_timeout",
                    extra={
                        "lock_entity_type": entity_type,
                        "lock_entity_id": str(entity_id),
                        "timeout_seconds": wait,
                    },
                )
                raise ConflictError(
                    entity_type,
                    str(entity_id),
                    f"lock not acquired within {wait}s",
                )
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(key, entry)

    def active_count(self) -> int:
        """Number of entities currently locked or awaited."""
        with self._guard:
            return len(self._entries)

"""Database layer - engine, base classes, and per-entity locks."""

from settlement_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from settlement_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from settlement_kernel.db.locking import EntityLockRegistry

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session_factory",
    "create_tables",
    "drop_tables",
    "reset_engine",
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "UUID",
    "EntityLockRegistry",
]

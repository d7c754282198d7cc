"""
Module: settlement_kernel.db.base
Responsibility: Declarative base and column types shared by every settlement
    table.
Architecture position: Kernel > DB.  Imported by models/; imports nothing
    from the rest of the project.

Invariants enforced:
    - Every row has a uuid4 primary key stored as String(36), so SQLite and
      PostgreSQL hold identical keys.
    - Money is Numeric(38, 9); floats are never mapped.
    - Datetimes are written as UTC and read back timezone-aware on every
      backend, including SQLite, which drops tzinfo on storage.
    - Rows that move through a lifecycle carry their own integer ``version``
      column, registered as ``version_id_col`` in the model's mapper args.

Failure modes:
    - ValueError when a naive datetime is bound.
    - StaleDataError on flush when another writer bumped ``version`` first.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """``uuid.UUID`` in Python, ``VARCHAR(36)`` in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime normalised to UTC in both directions."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"refusing to store naive datetime {value!r}")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Base for all settlement models: uuid4 ``id`` plus the type map."""

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """Adds who created and last changed a row, and when."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )
    created_by_id: Mapped[PyUUID]
    updated_by_id: Mapped[PyUUID | None]


UUID = PyUUID

"""
Module: settlement_kernel.db.engine
Responsibility: Owns the process-wide SQLAlchemy engine and session factory
    and the schema create/drop helpers.  Every service receives the session
    factory from here (through the orchestrator or the test fixtures).
Architecture position: Kernel > DB.  Imports db/base.py and, lazily,
    the models package so that ``Base.metadata`` knows every table.

Invariants enforced:
    - PostgreSQL connections run at READ COMMITTED; lifecycle services add
      SELECT ... FOR UPDATE on the rows they transition.
    - SQLite files are opened with ``check_same_thread=False`` and a busy
      timeout, so the notification worker and concurrent callers can share
      one database file.
    - Sessions keep attribute state after commit (``expire_on_commit=False``)
      so DTOs can be read once the transaction has closed.

Failure modes:
    - RuntimeError when the engine is used before ``init_engine_from_url``.
"""

import atexit

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from settlement_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    sqlite_busy_timeout: float = 30.0,
) -> Engine:
    """
    Create the engine for ``database_url``, replacing any previous one.

    Pool settings apply to server databases only; SQLite ignores them.
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()

    url = make_url(database_url)
    backend = url.get_backend_name()
    if backend == "sqlite":
        options = {
            "connect_args": {"check_same_thread": False, "timeout": sqlite_busy_timeout},
        }
    else:
        options = {
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "pool_pre_ping": True,
            "pool_timeout": pool_timeout,
            "isolation_level": "READ COMMITTED",
        }

    _engine = create_engine(url, echo=echo, **options)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)
    logger.info("engine_initialized", extra={"dialect": backend, "echo": echo})
    return _engine


def _require_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_engine() -> Engine:
    return _require_engine()


def get_session_factory() -> sessionmaker[Session]:
    """Factory for new sessions; each operation and each thread opens its own."""
    _require_engine()
    return _SessionFactory


def create_tables() -> None:
    """Create every settlement table that does not exist yet."""
    from settlement_kernel.db.base import Base
    from settlement_kernel.models import import_all_models

    import_all_models()
    Base.metadata.create_all(_require_engine())
    logger.info("tables_created", extra={"tables": sorted(Base.metadata.tables)})


def drop_tables() -> None:
    """Drop every settlement table (test setup against a shared database)."""
    from settlement_kernel.db.base import Base
    from settlement_kernel.models import import_all_models

    import_all_models()
    Base.metadata.drop_all(_require_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()

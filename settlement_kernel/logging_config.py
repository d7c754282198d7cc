"""
settlement_kernel.logging_config -- JSON-lines logging with bound context.

Responsibility:
    One JSON object per log line.  Every line carries the event name as
    ``message``, the logger name, the level, any ``extra`` fields of the call
    and whatever context is currently bound (correlation id, acting party,
    entity and operation).

Architecture position:
    Kernel root.  Imported by every layer; imports nothing from the project.

Invariants enforced:
    - Context is held in a single ``ContextVar``, so worker threads and
      asyncio tasks never see each other's bindings.
    - ``bind()`` restores the previous bindings on exit, even on error.
    - Only the fields in ``CONTEXT_FIELDS`` can be bound.

Failure modes:
    - Values the encoder does not know are logged via ``str()``; formatting
      never raises into the caller.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator
from uuid import UUID

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "actor_id",
    "entity_type",
    "entity_id",
    "operation",
)

_bound: ContextVar[dict[str, str]] = ContextVar("settlement_log_context", default={})


class LogContext:
    """Request-scoped fields merged into every log line."""

    @staticmethod
    def _merge(fields: dict[str, Any]) -> dict[str, str]:
        unknown = set(fields) - set(CONTEXT_FIELDS)
        if unknown:
            raise TypeError(f"unknown log context field(s): {sorted(unknown)}")
        merged = dict(_bound.get())
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        return merged

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Bind fields until ``clear()``; ``None`` values leave a field as is."""
        _bound.set(cls._merge(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_bound.get())

    @classmethod
    def clear(cls) -> None:
        _bound.set({})

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """Bind fields for the duration of a ``with`` block."""
        token = _bound.set(cls._merge(fields))
        try:
            yield cls
        finally:
            _bound.reset(token)


# Attributes every LogRecord has; anything else on a record came from ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _encode(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


class StructuredFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_bound.get(),
        }
        line.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in line
        )

        exc = record.exc_info[1] if record.exc_info else None
        if exc is not None:
            line["exc_type"] = type(exc).__name__
            line["exc_message"] = str(exc)
            code = getattr(exc, "code", None)
            if code is not None:
                line["exc_code"] = code
            # SettlementError subclasses keep their context as attributes
            line.update(
                (f"exc_{key}", value)
                for key, value in vars(exc).items()
                if not key.startswith("_")
            )
            line["traceback"] = self.formatException(record.exc_info)

        return json.dumps(line, default=_encode)


_NAMESPACE = "settlement_kernel"

_state_lock = threading.Lock()
_installed_handler: logging.Handler | None = None


def get_logger(name: str) -> logging.Logger:
    """Logger ``settlement_kernel.<name>``."""
    return logging.getLogger(f"{_NAMESPACE}.{name}")


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach a JSON handler to the ``settlement_kernel`` logger.

    Only the first call has an effect until ``reset_logging()``.
    """
    global _installed_handler
    with _state_lock:
        if _installed_handler is not None:
            return
        target = handler or logging.StreamHandler(stream or sys.stderr)
        target.setFormatter(StructuredFormatter())
        root = logging.getLogger(_NAMESPACE)
        root.setLevel(level.upper() if isinstance(level, str) else level)
        root.propagate = False
        root.addHandler(target)
        _installed_handler = target


def reset_logging() -> None:
    """Detach every handler and forget the configuration (tests only)."""
    global _installed_handler
    with _state_lock:
        root = logging.getLogger(_NAMESPACE)
        root.handlers.clear()
        root.setLevel(logging.WARNING)
        _installed_handler = None

"""
Configuration schema (``settlement_config.schema``).

Responsibility
--------------
Frozen dataclasses describing the runtime configuration of the settlement
core.  Each section validates itself in ``__post_init__`` so an invalid
configuration can never be constructed.

Architecture position
---------------------
**Config layer** -- pure data definitions.  May import kernel domain value
objects (currency registry); the kernel never imports this package.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from settlement_kernel.domain.currency import CurrencyRegistry

_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    echo: bool = False
    pool_size: int = 20

    def __post_init__(self) -> None:
        if not self.url or not self.url.strip():
            raise ValueError("database.url must not be empty")
        if self.pool_size <= 0:
            raise ValueError(f"database.pool_size must be positive, got {self.pool_size}")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"

    def __post_init__(self) -> None:
        level = str(self.level).upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"logging.level must be one of {_LOG_LEVELS}, got {self.level!r}")
        object.__setattr__(self, "level", level)

    @property
    def numeric_level(self) -> int:
        return logging.getLevelName(self.level)


@dataclass(frozen=True)
class LockingConfig:
    lock_timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        if self.lock_timeout_seconds <= 0:
            raise ValueError(
                f"locking.lock_timeout_seconds must be positive, got {self.lock_timeout_seconds}"
            )


@dataclass(frozen=True)
class NotificationConfig:
    async_delivery: bool = True
    queue_size: int = 1000

    def __post_init__(self) -> None:
        if self.queue_size <= 0:
            raise ValueError(f"notifications.queue_size must be positive, got {self.queue_size}")


@dataclass(frozen=True)
class EvidenceConfig:
    network: str = "simulated"
    block_floor: int = 5_000_000
    block_span: int = 1_000_000

    def __post_init__(self) -> None:
        if not self.network:
            raise ValueError("evidence.network must not be empty")
        if self.block_floor < 0:
            raise ValueError(f"evidence.block_floor cannot be negative, got {self.block_floor}")
        if self.block_span <= 0:
            raise ValueError(f"evidence.block_span must be positive, got {self.block_span}")


@dataclass(frozen=True)
class NoteConfig:
    number_prefix: str = "RN"
    token_uri_scheme: str = "ipfs"

    def __post_init__(self) -> None:
        if not self.number_prefix or not self.number_prefix.isalnum():
            raise ValueError(
                f"notes.number_prefix must be alphanumeric, got {self.number_prefix!r}"
            )
        if not self.token_uri_scheme:
            raise ValueError("notes.token_uri_scheme must not be empty")


@dataclass(frozen=True)
class SettlementConfig:
    """Complete runtime configuration."""

    config_id: str
    version: int
    database: DatabaseConfig
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    locking: LockingConfig = field(default_factory=LockingConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    evidence: EvidenceConfig = field(default_factory=EvidenceConfig)
    notes: NoteConfig = field(default_factory=NoteConfig)
    default_currency: str = "KES"
    checksum: str = ""

    def __post_init__(self) -> None:
        if self.version < 1:
            raise ValueError(f"version must be >= 1, got {self.version}")
        object.__setattr__(
            self, "default_currency", CurrencyRegistry.validate(self.default_currency)
        )

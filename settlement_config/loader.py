"""
Configuration Loader (``settlement_config.loader``).

Responsibility
--------------
Loads the YAML configuration file, applies the environment overrides and
parses the result into ``settlement_config.schema`` dataclasses.  Runtime
callers go through ``settlement_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required fields have no silent defaults.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``config_id`` or ``database.url``  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import copy
import hashlib
import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from settlement_config.schema import (
    DatabaseConfig,
    EvidenceConfig,
    LockingConfig,
    LoggingConfig,
    NoteConfig,
    NotificationConfig,
    SettlementConfig,
)

ENV_DATABASE_URL = "SETTLEMENT_DATABASE_URL"
ENV_LOG_LEVEL = "SETTLEMENT_LOG_LEVEL"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML must be a mapping")
    return data


def apply_env_overrides(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Return a copy of ``data`` with SETTLEMENT_* environment overrides applied."""
    merged = copy.deepcopy(data)
    if environ.get(ENV_DATABASE_URL):
        merged.setdefault("database", {})["url"] = environ[ENV_DATABASE_URL]
    if environ.get(ENV_LOG_LEVEL):
        merged.setdefault("logging", {})["level"] = environ[ENV_LOG_LEVEL]
    return merged


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"{name} must be a mapping, got {type(section).__name__}")
    return section


def parse_config(data: dict[str, Any]) -> SettlementConfig:
    """
    Parse a ``SettlementConfig`` from a dict.

    Raises:
        KeyError: if ``config_id`` or ``database.url`` is missing.
        ValueError: if any section fails validation.
    """
    database = _section(data, "database")
    logging_section = _section(data, "logging")
    locking = _section(data, "locking")
    notifications = _section(data, "notifications")
    evidence = _section(data, "evidence")
    notes = _section(data, "notes")

    return SettlementConfig(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        database=DatabaseConfig(
            url=database["url"],
            echo=bool(database.get("echo", False)),
            pool_size=int(database.get("pool_size", 20)),
        ),
        logging=LoggingConfig(level=logging_section.get("level", "INFO")),
        locking=LockingConfig(
            lock_timeout_seconds=float(locking.get("lock_timeout_seconds", 10.0)),
        ),
        notifications=NotificationConfig(
            async_delivery=bool(notifications.get("async_delivery", True)),
            queue_size=int(notifications.get("queue_size", 1000)),
        ),
        evidence=EvidenceConfig(
            network=str(evidence.get("network", "simulated")),
            block_floor=int(evidence.get("block_floor", 5_000_000)),
            block_span=int(evidence.get("block_span", 1_000_000)),
        ),
        notes=NoteConfig(
            number_prefix=str(notes.get("number_prefix", "RN")),
            token_uri_scheme=str(notes.get("token_uri_scheme", "ipfs")),
        ),
        default_currency=str(data.get("default_currency", "KES")),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()

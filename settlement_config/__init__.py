"""
settlement_config -- single public entrypoint for runtime configuration.

Responsibility:
    ``get_active_config()`` is the only way to obtain configuration.  No
    other component reads configuration files or environment variables.

Architecture position:
    Configuration -- sits above ``settlement_kernel`` and below
    ``settlement_services``.  The kernel MUST NEVER import from
    ``settlement_config``; the orchestrator translates the config into
    constructor arguments.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``KeyError`` / ``ValueError`` -- schema validation failures.

Every successful call emits a ``SETTLEMENT_CONFIG_TRACE`` log entry with the
config id, version and checksum.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from settlement_config.loader import (
    apply_env_overrides,
    compute_checksum,
    load_yaml_file,
    parse_config,
)
from settlement_config.schema import (
    DatabaseConfig,
    EvidenceConfig,
    LockingConfig,
    LoggingConfig,
    NoteConfig,
    NotificationConfig,
    SettlementConfig,
)
from settlement_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> SettlementConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: YAML file to load.  Defaults to the packaged defaults.yaml.
        environ: Environment for overrides.  Defaults to ``os.environ``.

    Raises:
        FileNotFoundError: If the file does not exist.
        KeyError: If a required key is missing.
        ValueError: If validation fails.
    """
    source = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    data = apply_env_overrides(
        load_yaml_file(source),
        os.environ if environ is None else environ,
    )
    config = parse_config(data)

    _logger.info(
        "SETTLEMENT_CONFIG_TRACE",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(source),
        },
    )
    return config


__all__ = [
    "get_active_config",
    "compute_checksum",
    "DEFAULT_CONFIG_PATH",
    "DatabaseConfig",
    "EvidenceConfig",
    "LockingConfig",
    "LoggingConfig",
    "NoteConfig",
    "NotificationConfig",
    "SettlementConfig",
]

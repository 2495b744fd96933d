"""Stable constants shared across treemerge modules."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1

# Configuration discovery.
DEFAULT_CONFIG_FILE: Final[str] = "treemerge.toml"
ENV_PREFIX: Final[str] = "TREEMERGE_"

# Merge defaults.
DEFAULT_MAX_CONCURRENCY: Final[int] = 16
DEFAULT_BACKUP_PREFIX: Final[str] = "treemerge-bak-"
DEFAULT_TIMEOUT_SECONDS: Final[float] = 0.0

# Logging defaults.
DEFAULT_LOGGER_NAME: Final[str] = "treemerge"
DEFAULT_LOG_FILENAME: Final[str] = "treemerge.jsonl"

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_BACKUP_PREFIX",
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_LOGGER_NAME",
    "DEFAULT_LOG_FILENAME",
    "DEFAULT_MAX_CONCURRENCY",
    "DEFAULT_TIMEOUT_SECONDS",
    "ENV_PREFIX",
]

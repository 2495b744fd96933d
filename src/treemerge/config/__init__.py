"""
treemerge config package public API.

File: src/treemerge/config/__init__.py

Purpose
- Export config loading/validation entrypoints and public error types.

Functional requirements
- Support loading from ``treemerge.toml`` + ``TREEMERGE_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from treemerge.config.loader import (
    ConfigLoadError,
    load_config,
    load_settings,
    normalize_paths,
)
from treemerge.config.schema import (
    DEFAULT_CONFIG,
    PATH_FIELDS,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    MergeSettings,
    TreeMergeConfig,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    validate_config,
)

__all__ = [
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "MergeSettings",
    "PATH_FIELDS",
    "TreeMergeConfig",
    "assert_valid_config",
    "default_config",
    "load_config",
    "load_settings",
    "merge_config",
    "migration_guidance",
    "normalize_paths",
    "validate_config",
]

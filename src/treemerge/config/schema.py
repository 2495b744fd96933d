"""
treemerge: configuration schema and validation.

File: src/treemerge/config/schema.py

Purpose
- Define the built-in defaults, the typed ``MergeSettings`` projection and the
  strict validation applied to every config layer.

Functional requirements
- Validation never stops at the first problem: every issue is reported as a
  ``ConfigValidationIssue`` with a dotted field path.
- For each table, unknown keys are reported before missing ones.
- A schema version other than the supported one is an issue whose message says
  which side needs upgrading.
"""

from __future__ import annotations

import copy
import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from treemerge.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_BACKUP_PREFIX,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_TIMEOUT_SECONDS,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

# Resolved against the config file's directory by the loader.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("merge", "backup_parent"),
    ("observability", "log_dir"),
)

_LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

_MISSING: Final = object()


class MetaConfig(TypedDict):
    schema_version: int


class MergeConfig(TypedDict):
    max_concurrency: int
    backup_prefix: str
    backup_parent: str
    timeout_seconds: float
    preserve_backup_times: bool


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_stdout: bool


class TreeMergeConfig(TypedDict):
    meta: MetaConfig
    merge: MergeConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[TreeMergeConfig] = {
    "meta": {"schema_version": ConfigSchemaVersion},
    "merge": {
        "max_concurrency": DEFAULT_MAX_CONCURRENCY,
        "backup_prefix": DEFAULT_BACKUP_PREFIX,
        "backup_parent": "",
        "timeout_seconds": DEFAULT_TIMEOUT_SECONDS,
        "preserve_backup_times": True,
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "logs/",
        "log_to_stdout": False,
    },
}


@dataclass(frozen=True, slots=True)
class MergeSettings:
    """Typed view of the ``[merge]`` table used by the merge orchestrator."""

    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    backup_prefix: str = DEFAULT_BACKUP_PREFIX
    backup_parent: str | None = None
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    preserve_backup_times: bool = True

    def __post_init__(self) -> None:
        if self.max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        if self.timeout_seconds < 0:
            raise ValueError("timeout_seconds must be >= 0")
        if not self.backup_prefix.strip():
            raise ValueError("backup_prefix must not be empty")

    @classmethod
    def from_config(cls, config: Mapping[str, object]) -> MergeSettings:
        """Accept either a whole validated config or just its ``[merge]`` table."""

        table = config.get("merge", config)
        if not isinstance(table, Mapping):
            raise ConfigValidationError((ConfigValidationIssue("merge", "expected object"),))
        values = {**DEFAULT_CONFIG["merge"], **table}
        return cls(
            max_concurrency=int(values["max_concurrency"]),
            backup_prefix=str(values["backup_prefix"]),
            backup_parent=str(values["backup_parent"]) or None,
            timeout_seconds=float(values["timeout_seconds"]),
            preserve_backup_times=bool(values["preserve_backup_times"]),
        )


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """One field that failed validation."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Outcome of ``validate_config``; ``config`` is set only when there are no issues."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised by ``assert_valid_config`` with every issue found."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {issue.path}: {issue.message}" for issue in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "unknown validation failure"))


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)


# A field check returns the normalized value, or ``_MISSING`` after recording an issue.
FieldCheck = Callable[[object, str, _IssueCollector], object]


def _type_name(value: object) -> str:
    return type(value).__name__


def _integer(*, minimum: int) -> FieldCheck:
    def check(value: object, path: str, issues: _IssueCollector) -> object:
        if isinstance(value, bool) or not isinstance(value, int):
            issues.add(path, f"expected integer, got {_type_name(value)}")
            return _MISSING
        if value < minimum:
            issues.add(path, f"must be >= {minimum}")
            return _MISSING
        return value

    return check


def _number(*, minimum: float) -> FieldCheck:
    def check(value: object, path: str, issues: _IssueCollector) -> object:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            issues.add(path, f"expected number, got {_type_name(value)}")
            return _MISSING
        number = float(value)
        if not math.isfinite(number):
            issues.add(path, "must be finite")
            return _MISSING
        if number < minimum:
            issues.add(path, f"must be >= {minimum}")
            return _MISSING
        return number

    return check


def _boolean(value: object, path: str, issues: _IssueCollector) -> object:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {_type_name(value)}")
    return _MISSING


def _text(*, allow_empty: bool, allow_separators: bool = True) -> FieldCheck:
    def check(value: object, path: str, issues: _IssueCollector) -> object:
        if not isinstance(value, str):
            issues.add(path, f"expected string, got {_type_name(value)}")
            return _MISSING
        text = value.strip()
        if not text and not allow_empty:
            issues.add(path, "must not be empty")
        elif "\x00" in text:
            issues.add(path, "must not contain NUL bytes")
        elif not allow_separators and ("/" in text or "\\" in text):
            issues.add(path, "must not include path separators")
        else:
            return text
        return _MISSING

    return check


def _choice(*allowed: str) -> FieldCheck:
    def check(value: object, path: str, issues: _IssueCollector) -> object:
        if not isinstance(value, str):
            issues.add(path, f"expected string, got {_type_name(value)}")
            return _MISSING
        text = value.strip().upper()
        if text not in allowed:
            issues.add(
                path, f"invalid value {text!r}; expected one of: {', '.join(sorted(allowed))}"
            )
            return _MISSING
        return text

    return check


def _schema_version(value: object, path: str, issues: _IssueCollector) -> object:
    version = _integer(minimum=1)(value, path, issues)
    if isinstance(version, int) and version != ConfigSchemaVersion:
        issues.add(path, migration_guidance(version))
        return _MISSING
    return version


_SCHEMA: Final[dict[str, dict[str, FieldCheck]]] = {
    "meta": {"schema_version": _schema_version},
    "merge": {
        "max_concurrency": _integer(minimum=1),
        "backup_prefix": _text(allow_empty=False, allow_separators=False),
        # Empty means the system temporary directory.
        "backup_parent": _text(allow_empty=True),
        "timeout_seconds": _number(minimum=0.0),
        "preserve_backup_times": _boolean,
    },
    "observability": {
        "log_level": _choice(*_LOG_LEVELS),
        "log_dir": _text(allow_empty=False),
        "log_to_stdout": _boolean,
    },
}


def default_config() -> TreeMergeConfig:
    """Return a fresh copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade treemerge.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the treemerge runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; nested tables merge key by key."""

    merged: dict[str, Any] = {}
    for layer in (base, overlay):
        for key in sorted(layer):
            value = layer[key]
            current = merged.get(key)
            if isinstance(value, Mapping):
                merged[key] = merge_config(current if isinstance(current, dict) else {}, value)
            else:
                merged[key] = copy.deepcopy(value)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Check ``config`` against the schema and collect every issue."""

    issues = _IssueCollector()
    normalized = _check_table(config, "", _SCHEMA, issues)
    if normalized is None or issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return the normalized config or raise ``ConfigValidationError``."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def _check_table(
    value: object,
    path: str,
    fields: Mapping[str, FieldCheck | Mapping[str, FieldCheck]],
    issues: _IssueCollector,
) -> dict[str, Any] | None:
    if not isinstance(value, Mapping):
        issues.add(path or "<root>", f"expected object, got {_type_name(value)}")
        return None
    table: dict[str, object] = {}
    for key, item in value.items():
        if isinstance(key, str):
            table[key] = item
        else:
            issues.add(path or "<root>", f"object key must be string, got {_type_name(key)}")

    for key in sorted(set(table) - set(fields)):
        issues.add(_join(path, key), "unknown field")
    for key in sorted(set(fields) - set(table)):
        issues.add(_join(path, key), "missing required field")

    out: dict[str, Any] = {}
    for key, rule in fields.items():
        if key not in table:
            continue
        field_path = _join(path, key)
        if isinstance(rule, Mapping):
            nested = _check_table(table[key], field_path, rule, issues)
            if nested is not None:
                out[key] = nested
            continue
        checked = rule(table[key], field_path, issues)
        if checked is not _MISSING:
            out[key] = checked
    return out


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


__all__ = [
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
    "merge_config",
    "migration_guidance",
    "validate_config",
]

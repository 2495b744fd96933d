"""
treemerge: runtime config loader.

File: src/treemerge/config/loader.py

Purpose
- Build the effective configuration from built-in defaults, ``treemerge.toml``,
  ``TREEMERGE_*`` environment variables and programmatic overrides, in that
  order of increasing precedence.

Functional requirements
- The file layer is validated on its own first so TOML mistakes are reported
  against the file, before env or overrides can mask them.
- Environment variables are derived from the scalar defaults:
  ``[merge] max_concurrency`` is ``TREEMERGE_MERGE_MAX_CONCURRENCY``.
- Path fields are resolved relative to the directory of the config file.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from treemerge.config.schema import (
    PATH_FIELDS,
    MergeSettings,
    assert_valid_config,
    default_config,
    merge_config,
)
from treemerge.constants import DEFAULT_CONFIG_FILE, ENV_PREFIX

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})

ConfigPath = tuple[str, ...]


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


@dataclass(frozen=True, slots=True)
class _EnvVar:
    """One environment variable bound to a scalar config field."""

    name: str
    path: ConfigPath
    kind: type

    def parse(self, raw: str) -> object:
        text = raw.strip()
        dotted = ".".join(self.path)
        if self.kind is bool:
            lowered = text.lower()
            if lowered in _TRUTHY:
                return True
            if lowered in _FALSY:
                return False
            raise ConfigLoadError(
                f"{self.name} -> {dotted} must be a boolean (true/false/1/0/yes/no/on/off)"
            )
        if self.kind is int:
            try:
                return int(text)
            except ValueError as exc:
                raise ConfigLoadError(f"{self.name} -> {dotted} must be an integer") from exc
        if self.kind is float:
            try:
                return float(text)
            except ValueError as exc:
                raise ConfigLoadError(f"{self.name} -> {dotted} must be a number") from exc
        return text


def load_config(
    config_path: str | Path | None = None,
    *,
    overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """
    Return the validated effective config.

    ``config_path`` defaults to ``./treemerge.toml``, which may be absent; an
    explicit path must exist. ``overrides`` accepts dotted keys such as
    ``{"merge.max_concurrency": 4}``. ``environ`` defaults to ``os.environ``.
    """

    path = _resolve_config_path(config_path)
    from_file = _read_toml(path, required=config_path is not None)
    config = assert_valid_config(merge_config(default_config(), from_file))

    env = os.environ if environ is None else environ
    layered = merge_config(config, _env_layer(config, env))
    layered = merge_config(layered, _override_layer(overrides or {}))
    config = assert_valid_config(layered)

    return normalize_paths(config, base_dir=path.parent)


def load_settings(
    config_path: str | Path | None = None,
    *,
    overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> MergeSettings:
    """Load config and return its ``[merge]`` table as ``MergeSettings``."""

    return MergeSettings.from_config(
        load_config(config_path, overrides=overrides, environ=environ)
    )


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve relative path fields against ``base_dir``; empty fields stay empty."""

    normalized = merge_config({}, config)
    for field_path in PATH_FIELDS:
        *parents, leaf = field_path
        table: Any = normalized
        for key in parents:
            table = table.get(key) if isinstance(table, dict) else None
        if not isinstance(table, dict):
            continue
        raw = table.get(leaf)
        if isinstance(raw, str) and raw:
            table[leaf] = _absolute_posix(raw, base_dir)
    return normalized


def _resolve_config_path(config_path: str | Path | None) -> Path:
    if config_path is None:
        return (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except FileNotFoundError:
        if required:
            raise ConfigLoadError(f"config file not found: {path}") from None
        return {}
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_layer(config: Mapping[str, object], environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for var in sorted(_env_vars(config), key=lambda item: item.name):
        raw = environ.get(var.name)
        if raw is not None:
            _assign(layer, var.path, var.parse(raw))
    return layer


def _env_vars(config: Mapping[str, object], prefix: ConfigPath = ()) -> Iterator[_EnvVar]:
    for key, value in config.items():
        path = (*prefix, key)
        if isinstance(value, Mapping):
            yield from _env_vars(value, path)
            continue
        # bool first: it is also an int.
        kind = next(
            (candidate for candidate in (bool, int, float, str) if isinstance(value, candidate)),
            None,
        )
        if kind is not None:
            name = ENV_PREFIX + "_".join(part.upper() for part in path)
            yield _EnvVar(name=name, path=path, kind=kind)


def _override_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for key in sorted(overrides):
        path = tuple(part for part in key.split(".") if part)
        if not path:
            raise ConfigLoadError(f"invalid override key {key!r}")
        value = overrides[key]
        _assign(layer, path, merge_config({}, value) if isinstance(value, Mapping) else value)
    return layer


def _assign(target: dict[str, Any], path: ConfigPath, value: object) -> None:
    *parents, leaf = path
    for key in parents:
        child = target.get(key)
        if not isinstance(child, dict):
            child = target[key] = {}
        target = child
    target[leaf] = value


def _absolute_posix(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "load_config",
    "load_settings",
    "normalize_paths",
]

"""
treemerge: unit tests for config schema

File: tests/unit/config/test_schema.py

Purpose
- Validate strict schema checks and the typed ``MergeSettings`` projection.

What this test file should cover
- Defaults validate cleanly.
- Structured issue paths for wrong types, unknown and missing fields.
- Schema version migration guidance.
"""

from __future__ import annotations

import pytest

from treemerge.config.schema import (
    ConfigSchemaVersion,
    ConfigValidationError,
    MergeSettings,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    validate_config,
)


def _issue_paths(config: dict[str, object]) -> list[str]:
    return [issue.path for issue in validate_config(config).issues]


def test_default_config_is_valid_and_isolated() -> None:
    first = default_config()
    first["merge"]["max_concurrency"] = 99

    result = validate_config(default_config())

    assert result.is_valid
    assert result.config is not None
    assert result.config["merge"]["max_concurrency"] == 16
    assert result.config["merge"]["backup_prefix"] == "treemerge-bak-"


def test_validation_reports_type_and_range_issues_with_paths() -> None:
    config = merge_config(
        default_config(),
        {
            "merge": {"max_concurrency": 0, "timeout_seconds": -1, "preserve_backup_times": "yes"},
            "observability": {"log_level": "LOUD"},
        },
    )

    result = validate_config(config)

    assert not result.is_valid
    paths = {issue.path for issue in result.issues}
    assert paths == {
        "merge.max_concurrency",
        "merge.timeout_seconds",
        "merge.preserve_backup_times",
        "observability.log_level",
    }


def test_validation_rejects_unknown_and_missing_fields() -> None:
    config = default_config()
    del config["merge"]["backup_prefix"]
    config["merge"]["retries"] = 3  # type: ignore[typeddict-unknown-key]

    assert _issue_paths(config) == ["merge.retries", "merge.backup_prefix"]


def test_validation_rejects_backup_prefix_with_separator() -> None:
    config = merge_config(default_config(), {"merge": {"backup_prefix": "../escape-"}})

    assert _issue_paths(config) == ["merge.backup_prefix"]


def test_validation_normalizes_log_level_case() -> None:
    config = merge_config(default_config(), {"observability": {"log_level": "debug"}})

    assert assert_valid_config(config)["observability"]["log_level"] == "DEBUG"


def test_validation_allows_empty_backup_parent_but_not_empty_log_dir() -> None:
    config = merge_config(
        default_config(), {"merge": {"backup_parent": ""}, "observability": {"log_dir": " "}}
    )

    assert _issue_paths(config) == ["observability.log_dir"]


def test_schema_version_mismatch_includes_migration_guidance() -> None:
    config = merge_config(default_config(), {"meta": {"schema_version": ConfigSchemaVersion + 1}})

    with pytest.raises(ConfigValidationError) as excinfo:
        assert_valid_config(config)

    assert excinfo.value.issues[0].path == "meta.schema_version"
    assert "upgrade the treemerge runtime" in str(excinfo.value)
    assert "current" in migration_guidance(ConfigSchemaVersion)


def test_non_mapping_root_is_rejected() -> None:
    result = validate_config(["not", "a", "table"])

    assert result.config is None
    assert result.issues[0].path == "<root>"


def test_merge_settings_from_full_config_and_merge_table() -> None:
    config = merge_config(
        default_config(),
        {"merge": {"max_concurrency": 3, "backup_parent": "/var/tmp/tm", "timeout_seconds": 2}},
    )

    from_full = MergeSettings.from_config(config)
    from_table = MergeSettings.from_config(config["merge"])

    assert from_full == from_table
    assert from_full.max_concurrency == 3
    assert from_full.backup_parent == "/var/tmp/tm"
    assert from_full.timeout_seconds == 2.0


def test_merge_settings_treat_empty_backup_parent_as_system_temp() -> None:
    assert MergeSettings.from_config(default_config()).backup_parent is None


@pytest.mark.parametrize(
    "kwargs",
    [{"max_concurrency": 0}, {"timeout_seconds": -0.5}, {"backup_prefix": "  "}],
)
def test_merge_settings_reject_invalid_values(kwargs: dict[str, object]) -> None:
    with pytest.raises(ValueError):
        MergeSettings(**kwargs)

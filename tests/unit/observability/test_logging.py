"""
treemerge: unit tests for observability logging

File: tests/unit/observability/test_logging.py

Purpose
- Validate structured JSON logging with correlation metadata, queue-backed
  reliability and the structlog bridge used by the merge components.

What this test file should cover
- JSON line validity and correlation field propagation.
- Multi-threaded logging stability.
- Queue drain/shutdown behavior.
- ``merge_id`` on every line emitted during a merge.

Non-functional requirements
- Deterministic and non-flaky.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import threading
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import structlog

from treemerge.config.schema import MergeSettings
from treemerge.merge.orchestrator import merge_directories
from treemerge.observability.logging import (
    LoggingConfig,
    correlation_scope,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()
    structlog.reset_defaults()


def _logger_name() -> str:
    return f"treemerge.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_json_logging_preserves_correlation_and_extra_fields(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            run_id="run-correlation",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            log_to_stdout=False,
        )
    )
    logger = logging.getLogger(logger_name)

    with correlation_scope(merge_id="merge-abc"):
        logger.info("merge_started", extra={"dest_root": tmp_path / "out", "count": 3})

    shutdown_logging(handle)

    assert handle.log_path == tmp_path / "run-correlation" / "treemerge.jsonl"
    parsed = _read_json_lines(handle.log_path)
    assert len(parsed) == 1
    first = parsed[0]
    assert first["run_id"] == "run-correlation"
    assert first["merge_id"] == "merge-abc"
    assert first["message"] == "merge_started"
    assert first["dest_root"] == str(tmp_path / "out")
    assert first["count"] == 3
    assert first["level"] == "info"
    assert first["logger"] == logger_name


def test_correlation_scope_nests_and_restores() -> None:
    with correlation_scope(merge_id="outer"):
        with correlation_scope(merge_id="inner", run_id="run-1"):
            assert get_correlation_context() == {"merge_id": "inner", "run_id": "run-1"}
        assert get_correlation_context() == {"merge_id": "outer"}
        with correlation_scope(merge_id=None):
            assert get_correlation_context() == {}
    assert get_correlation_context() == {}


def test_correlation_scope_rejects_blank_values() -> None:
    with pytest.raises(ValueError, match="must not be empty"), correlation_scope(merge_id=" "):
        pass


def test_setup_structured_logging_validates_config(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="path separators"):
        setup_structured_logging(
            LoggingConfig(run_id="r", base_log_dir=tmp_path, log_filename="a/b.jsonl")
        )
    with pytest.raises(ValueError, match="unsupported logging level"):
        setup_structured_logging(LoggingConfig(run_id="r", base_log_dir=tmp_path, level="LOUD"))


def test_multithreaded_logging_produces_valid_json_lines(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            run_id="run-threaded",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            log_to_stdout=False,
            queue_size=4096,
        )
    )
    logger = logging.getLogger(logger_name)

    total_threads = 8
    per_thread = 40

    def worker(thread_idx: int) -> None:
        for i in range(per_thread):
            logger.info("merge_file_created", extra={"thread_idx": thread_idx, "index": i})

    threads = [threading.Thread(target=worker, args=(idx,)) for idx in range(total_threads)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    shutdown_logging(handle)

    lines = handle.log_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == total_threads * per_thread
    for line in lines:
        parsed = json.loads(line)
        assert isinstance(parsed, dict)
        assert parsed["message"] == "merge_file_created"


def test_queue_handler_non_blocking_and_shutdown_flushes(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            run_id="run-flush",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            log_to_stdout=False,
            queue_size=10_000,
        )
    )
    logger = logging.getLogger(logger_name)

    queue_handlers = [h for h in logger.handlers if isinstance(h, logging.handlers.QueueHandler)]
    assert queue_handlers, "expected queue-backed non-blocking logging"

    expected = 300
    for i in range(expected):
        logger.info("message %s", i)

    shutdown_logging(handle)
    shutdown_logging(handle)

    lines = handle.log_path.read_text(encoding="utf-8").splitlines()
    assert handle.dropped_records == 0
    assert handle.is_shutdown
    assert len(lines) == expected


def test_merge_events_carry_merge_id_through_structlog(tmp_path: Path) -> None:
    src = tmp_path / "src"
    (src / "nested").mkdir(parents=True)
    (src / "nested" / "a.txt").write_text("a", encoding="utf-8")
    setup_logging(
        {"log_level": "DEBUG", "log_dir": str(tmp_path / "logs")},
        run_id="run-merge",
    )

    report = merge_directories(
        src,
        tmp_path / "dest",
        settings=MergeSettings(backup_parent=str(tmp_path / "backups")),
    )
    shutdown_logging()

    parsed = _read_json_lines(tmp_path / "logs" / "run-merge" / "treemerge.jsonl")
    messages = [line["message"] for line in parsed]
    assert "merge_started" in messages
    assert "merge_file_created" in messages
    assert "merge_committed" in messages
    assert all(line["merge_id"] == report.merge_id for line in parsed)
    assert all(line["run_id"] == "run-merge" for line in parsed)
    committed = next(line for line in parsed if line["message"] == "merge_committed")
    assert committed["stats"]["files_created"] == 1

"""
treemerge: merge orchestrator

File: src/treemerge/merge/orchestrator.py

Purpose
- Public entry point that publishes a source tree into a destination tree so
  callers observe either a fully applied merge or a fully reverted one.

Phases per invocation
- validating: path checks, no filesystem mutation
- merging: backup directory created, parallel tree walk
- committing | rolling_back: backup discarded, or ledger replayed
- done: backup directory removed unconditionally

Functional requirements
- ``merge(p, p)`` is a no-op.
- Rollback is automatic; rollback failures are raised together with the
  error that triggered them.
"""

from __future__ import annotations

import asyncio
import os
import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from treemerge.config.schema import MergeSettings
from treemerge.errors import (
    MergeInputError,
    MergeNotADirectoryError,
    MergeNotFoundError,
    RollbackError,
    wrap_os_error,
)
from treemerge.merge.engine import MergeRequest, MergeStats, TreeMergeEngine
from treemerge.merge.ledger import RollbackLedger
from treemerge.observability.logging import correlation_scope
from treemerge.utils.concurrency import (
    BoundedSemaphore,
    CancellationToken,
    run_in_thread_to_completion,
)
from treemerge.utils.fs import (
    PathLike,
    copy_file,
    create_backup_directory,
    discard_backup_directory,
    is_within,
)

if TYPE_CHECKING:
    from collections.abc import Callable


class MergePhase(StrEnum):
    """Lifecycle phases of one merge invocation."""

    VALIDATING = "validating"
    MERGING = "merging"
    COMMITTING = "committing"
    ROLLING_BACK = "rolling_back"
    DONE = "done"


class MergeStatus(StrEnum):
    """Outcome of a merge that returned normally."""

    NOOP = "noop"
    COMMITTED = "committed"


@dataclass(frozen=True, slots=True)
class MergeReport:
    """Summary returned by a successful merge."""

    merge_id: str
    source_root: Path
    dest_root: Path
    status: MergeStatus
    stats: MergeStats = field(default_factory=MergeStats)
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, object]:
        return {
            "merge_id": self.merge_id,
            "source_root": str(self.source_root),
            "dest_root": str(self.dest_root),
            "status": self.status.value,
            "stats": self.stats.to_dict(),
            "duration_seconds": self.duration_seconds,
        }


class MergeOrchestrator:
    """Validate, merge, and commit or roll back one source/destination pair at a time."""

    def __init__(
        self,
        settings: MergeSettings | None = None,
        *,
        copy_fn: Callable[[Path, Path], None] = copy_file,
        id_factory: Callable[[], str] | None = None,
        logger: Any | None = None,
    ) -> None:
        self._settings = settings if settings is not None else MergeSettings()
        self._copy_fn = copy_fn
        self._id_factory = id_factory if id_factory is not None else _new_merge_id
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def settings(self) -> MergeSettings:
        return self._settings

    async def merge(
        self,
        src: PathLike,
        dest: PathLike,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> MergeReport:
        """Merge ``src`` into ``dest``; on failure undo every applied change and raise."""

        merge_id = self._id_factory()
        with correlation_scope(merge_id=merge_id):
            return await self._merge(merge_id, src, dest, cancel_token)

    async def _merge(
        self,
        merge_id: str,
        src: PathLike,
        dest: PathLike,
        cancel_token: CancellationToken | None,
    ) -> MergeReport:
        log = self._logger.bind(merge_id=merge_id)
        started = time.monotonic()

        log.debug("merge_phase", phase=MergePhase.VALIDATING.value)
        source_root, dest_root = await asyncio.to_thread(_validate_roots, src, dest)
        if source_root == dest_root:
            log.info("merge_noop", source_root=str(source_root), dest_root=str(dest_root))
            return MergeReport(
                merge_id=merge_id,
                source_root=source_root,
                dest_root=dest_root,
                status=MergeStatus.NOOP,
            )

        token = cancel_token if cancel_token is not None else CancellationToken()
        ledger = RollbackLedger(logger=log)
        timer: asyncio.TimerHandle | None = None
        if self._settings.timeout_seconds > 0:
            timer = token.cancel_after(self._settings.timeout_seconds)

        log.info(
            "merge_started",
            phase=MergePhase.MERGING.value,
            source_root=str(source_root),
            dest_root=str(dest_root),
            max_concurrency=self._settings.max_concurrency,
        )
        try:
            backup_root = await run_in_thread_to_completion(
                create_backup_directory,
                self._settings.backup_prefix,
                self._settings.backup_parent,
            )
            try:
                request = MergeRequest(
                    source_root=source_root,
                    dest_root=dest_root,
                    backup_root=backup_root,
                    merge_id=merge_id,
                )
                engine = TreeMergeEngine(
                    request,
                    ledger,
                    token=token,
                    semaphore=BoundedSemaphore(self._settings.max_concurrency),
                    copy_fn=self._copy_fn,
                    preserve_backup_times=self._settings.preserve_backup_times,
                    logger=self._logger,
                )
                try:
                    await run_in_thread_to_completion(_ensure_dest_root, dest_root, ledger)
                    await engine.merge_dir(source_root, dest_root)
                except (Exception, asyncio.CancelledError) as exc:
                    log.warning(
                        "merge_failed",
                        phase=MergePhase.ROLLING_BACK.value,
                        error=str(exc),
                        error_type=type(exc).__name__,
                        pending_actions=len(ledger),
                    )
                    await _roll_back(ledger, exc, merge_id=merge_id)
                    raise

                log.debug("merge_phase", phase=MergePhase.COMMITTING.value)
                stats = engine.stats()
            finally:
                await run_in_thread_to_completion(discard_backup_directory, backup_root)
        finally:
            if timer is not None:
                timer.cancel()

        report = MergeReport(
            merge_id=merge_id,
            source_root=source_root,
            dest_root=dest_root,
            status=MergeStatus.COMMITTED,
            stats=stats,
            duration_seconds=round(time.monotonic() - started, 6),
        )
        log.info("merge_committed", phase=MergePhase.DONE.value, stats=stats.to_dict())
        return report


async def merge_directories_async(
    src: PathLike,
    dest: PathLike,
    *,
    settings: MergeSettings | None = None,
    copy_fn: Callable[[Path, Path], None] = copy_file,
    cancel_token: CancellationToken | None = None,
) -> MergeReport:
    """Merge ``src`` into ``dest`` with a one-off ``MergeOrchestrator``."""

    orchestrator = MergeOrchestrator(settings, copy_fn=copy_fn)
    return await orchestrator.merge(src, dest, cancel_token=cancel_token)


def merge_directories(
    src: PathLike,
    dest: PathLike,
    *,
    settings: MergeSettings | None = None,
    copy_fn: Callable[[Path, Path], None] = copy_file,
) -> MergeReport:
    """Blocking wrapper around ``merge_directories_async`` for synchronous callers."""

    return asyncio.run(merge_directories_async(src, dest, settings=settings, copy_fn=copy_fn))


def _validate_roots(src: PathLike, dest: PathLike) -> tuple[Path, Path]:
    """Return the resolved roots; equal roots mean the merge is a no-op."""

    src_text = os.fspath(src)
    dest_text = os.fspath(dest)
    if src_text == dest_text:
        same = _resolve(src_text) if src_text.strip() else Path(src_text)
        return same, same
    if not src_text.strip():
        raise MergeInputError("source directory not set", operation="validate")
    if not dest_text.strip():
        raise MergeInputError("destination directory not set", path=src_text, operation="validate")

    source_root = _resolve(src_text)
    dest_root = _resolve(dest_text)
    if source_root == dest_root:
        return source_root, dest_root

    try:
        source_is_dir = source_root.is_dir()
        source_exists = source_is_dir or source_root.exists()
    except OSError as exc:
        raise wrap_os_error(exc, path=source_root, operation="stat") from exc
    if not source_exists:
        raise MergeNotFoundError(
            f"source directory does not exist: {source_root}",
            path=source_root,
            operation="validate",
        )
    if not source_is_dir:
        raise MergeNotADirectoryError(
            f"source is not a directory: {source_root}",
            path=source_root,
            operation="validate",
        )

    if dest_root.exists() and not dest_root.is_dir():
        raise MergeNotADirectoryError(
            f"destination is not a directory: {dest_root}",
            path=dest_root,
            operation="validate",
        )
    if is_within(dest_root, source_root):
        raise MergeInputError(
            f"destination {dest_root} is inside source {source_root}",
            path=dest_root,
            operation="validate",
        )
    # A source below the destination is fine unless the walk maps one of its
    # own entries back onto the source itself.
    if is_within(source_root, dest_root):
        echo = source_root / source_root.relative_to(dest_root)
        if echo.exists():
            raise MergeInputError(
                f"source {source_root} is inside destination {dest_root} and contains "
                f"{echo}, which the merge would write back into the source",
                path=source_root,
                operation="validate",
            )
    return source_root, dest_root


def _resolve(path_text: str) -> Path:
    return Path(path_text).expanduser().resolve(strict=False)


def _ensure_dest_root(dest_root: Path, ledger: RollbackLedger) -> None:
    if dest_root.is_dir():
        return
    # Rollback removes the topmost directory this merge had to create.
    missing = dest_root
    while missing.parent != missing and not missing.parent.exists():
        missing = missing.parent
    try:
        dest_root.mkdir(parents=True)
    except FileExistsError:
        if dest_root.is_dir():
            return
        raise MergeNotADirectoryError(
            f"destination is not a directory: {dest_root}",
            path=dest_root,
            operation="mkdir",
        ) from None
    except OSError as exc:
        raise wrap_os_error(exc, path=dest_root, operation="mkdir") from exc
    ledger.record_created_directory(missing)


async def _roll_back(ledger: RollbackLedger, exc: BaseException, *, merge_id: str) -> None:
    # Replay finishes even if this task is cancelled again while it runs.
    try:
        undone = await run_in_thread_to_completion(ledger.replay)
    except RollbackError as rollback_exc:
        raise RollbackError(rollback_exc.failures, original=exc) from exc
    exc.add_note(f"merge {merge_id} rolled back: {undone} change(s) undone")


def _new_merge_id() -> str:
    return f"merge-{uuid.uuid4().hex[:12]}"


__all__ = [
    "MergeOrchestrator",
    "MergePhase",
    "MergeReport",
    "MergeStatus",
    "merge_directories",
    "merge_directories_async",
]

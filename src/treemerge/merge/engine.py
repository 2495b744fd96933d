"""
Parallel recursive tree merge with per-entry backup and rollback bookkeeping.

Entry handling for every child of a source directory:
- directory: ensure the destination directory exists, record its removal only
  when this merge created it, then recurse
- file without a destination counterpart: copy, record deletion
- file with a destination counterpart: overwrite only when the source
  modification time is strictly newer; the previous content is backed up
  under ``backup_root`` at the same relative path first
- a destination symlink is replaced by a regular file; rollback recreates the
  link instead of restoring a byte copy of its target
- anything else is left untouched

Each child runs as its own task in a ``CooperativeTaskGroup``; blocking
filesystem work runs in threads under a shared ``BoundedSemaphore``.
"""

from __future__ import annotations

import os
import stat
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from treemerge.errors import (
    MergeIsADirectoryError,
    MergeNotADirectoryError,
    wrap_os_error,
)
from treemerge.utils.concurrency import CooperativeTaskGroup
from treemerge.utils.fs import copy_file, remove_path

if TYPE_CHECKING:
    from collections.abc import Callable

    from treemerge.merge.ledger import RollbackLedger
    from treemerge.utils.concurrency import BoundedSemaphore, CancellationToken


@dataclass(frozen=True, slots=True)
class MergeRequest:
    """Immutable per-invocation merge context."""

    source_root: Path
    dest_root: Path
    backup_root: Path
    merge_id: str

    def backup_path_for(self, dest_path: Path) -> Path:
        return self.backup_root / dest_path.relative_to(self.dest_root)


@dataclass(frozen=True, slots=True)
class MergeStats:
    """Counters describing what one merge changed."""

    directories_created: int = 0
    files_created: int = 0
    files_overwritten: int = 0
    files_skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class _SourceEntry:
    name: str
    path: Path
    is_dir: bool


class _StatsCounter:
    """Thread-safe accumulator behind ``MergeStats``."""

    __slots__ = ("_counts", "_lock")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts = MergeStats().to_dict()

    def increment(self, field_name: str) -> None:
        with self._lock:
            self._counts[field_name] += 1

    def snapshot(self) -> MergeStats:
        with self._lock:
            return MergeStats(**self._counts)


class TreeMergeEngine:
    """Merge one source tree into one destination tree for a single ``MergeRequest``."""

    def __init__(
        self,
        request: MergeRequest,
        ledger: RollbackLedger,
        *,
        token: CancellationToken,
        semaphore: BoundedSemaphore,
        copy_fn: Callable[[Path, Path], None] = copy_file,
        preserve_backup_times: bool = True,
        logger: Any | None = None,
    ) -> None:
        self._request = request
        self._ledger = ledger
        self._token = token
        self._semaphore = semaphore
        self._copy_fn = copy_fn
        self._preserve_backup_times = preserve_backup_times
        self._stats = _StatsCounter()
        base_logger = logger if logger is not None else structlog.get_logger(__name__)
        self._logger = base_logger.bind(merge_id=request.merge_id)

    @property
    def request(self) -> MergeRequest:
        return self._request

    def stats(self) -> MergeStats:
        return self._stats.snapshot()

    async def merge_dir(self, src: Path, dest: Path) -> None:
        """Merge the children of ``src`` into the existing directory ``dest``."""

        self._token.raise_if_cancelled()
        entries = await self._semaphore.run_in_thread(_list_entries, src)
        group = CooperativeTaskGroup(self._token)
        await group.run(self._merge_entry(entry, dest / entry.name) for entry in entries)

    async def _merge_entry(self, entry: _SourceEntry, dest: Path) -> None:
        if entry.is_dir:
            # The directory exists before any task for its children is spawned.
            await self._semaphore.run_in_thread(self._ensure_directory, dest)
            await self.merge_dir(entry.path, dest)
            return
        await self._semaphore.run_in_thread(self._merge_file, entry.path, dest)

    def _ensure_directory(self, dest: Path) -> None:
        self._token.raise_if_cancelled()
        try:
            dest.mkdir()
        except FileExistsError:
            if dest.is_dir():
                return
            raise MergeNotADirectoryError(
                f"destination exists and is not a directory: {dest}",
                path=dest,
                operation="mkdir",
            ) from None
        except OSError as exc:
            raise wrap_os_error(exc, path=dest, operation="mkdir") from exc

        self._ledger.record_created_directory(dest)
        self._stats.increment("directories_created")
        self._logger.debug("merge_directory_created", path=str(dest))

    def _merge_file(self, src: Path, dest: Path) -> None:
        self._token.raise_if_cancelled()
        try:
            dest_info: os.stat_result | None = dest.stat()
        except FileNotFoundError:
            dest_info = None
        except OSError as exc:
            raise wrap_os_error(exc, path=dest, operation="stat") from exc

        if dest_info is None:
            self._copy_fn(src, dest)
            self._ledger.record_created_file(dest)
            self._stats.increment("files_created")
            self._logger.debug("merge_file_created", path=str(dest))
            return

        if stat.S_ISDIR(dest_info.st_mode):
            raise MergeIsADirectoryError(
                f"destination is a directory, cannot replace it with file {src}",
                path=dest,
                operation="copy",
            )

        try:
            src_info = src.stat()
        except OSError as exc:
            raise wrap_os_error(exc, path=src, operation="stat") from exc

        if src_info.st_mtime_ns <= dest_info.st_mtime_ns:
            self._stats.increment("files_skipped")
            self._logger.debug("merge_file_skipped_not_newer", path=str(dest))
            return

        if dest.is_symlink():
            # The link itself is replaced; its target file is never modified.
            try:
                link_target = os.readlink(dest)
            except OSError as exc:
                raise wrap_os_error(exc, path=dest, operation="readlink") from exc
            self._ledger.record_replaced_symlink(dest, link_target)
            saved_as = f"symlink -> {link_target}"
        else:
            backup_path = self._request.backup_path_for(dest)
            copy_file(dest, backup_path, preserve_times=self._preserve_backup_times)
            self._ledger.record_overwritten_file(backup_path, dest)
            saved_as = str(backup_path)

        self._token.raise_if_cancelled()
        remove_path(dest)
        self._copy_fn(src, dest)
        self._stats.increment("files_overwritten")
        self._logger.debug("merge_file_overwritten", path=str(dest), backup=saved_as)


def _list_entries(src: Path) -> list[_SourceEntry]:
    try:
        with os.scandir(src) as iterator:
            entries = [
                _SourceEntry(name=item.name, path=Path(item.path), is_dir=item.is_dir())
                for item in iterator
            ]
    except OSError as exc:
        raise wrap_os_error(exc, path=src, operation="list") from exc
    entries.sort(key=lambda entry: entry.name)
    return entries


__all__ = [
    "MergeRequest",
    "MergeStats",
    "TreeMergeEngine",
]

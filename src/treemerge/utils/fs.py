"""
treemerge: filesystem utilities

File: src/treemerge/utils/fs.py

Purpose
- Provide the leaf filesystem operations used by the merge engine: an
  exclusive-create file copy, idempotent deletion and ephemeral backup
  directories.

Functional requirements
- ``copy_file`` never truncates or overwrites an existing destination and never
  leaves a partially written destination behind.
- ``remove_path`` treats a missing path as already removed.
- Every ``OSError`` is wrapped into the treemerge error taxonomy with the path
  and operation that produced it.

Non-functional requirements
- Standard library only and cross-platform behavior where feasible.
"""

from __future__ import annotations

import contextlib
import os
import shutil
import stat
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from treemerge.constants import DEFAULT_BACKUP_PREFIX
from treemerge.errors import (
    MergeIOError,
    MergeIsADirectoryError,
    MergeNotFoundError,
    wrap_os_error,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

PathLike = str | os.PathLike[str]

_OPEN_FLAGS = os.O_WRONLY | os.O_CREAT | os.O_EXCL | getattr(os, "O_BINARY", 0)

__all__ = [
    "PathLike",
    "backup_directory",
    "copy_file",
    "create_backup_directory",
    "discard_backup_directory",
    "is_within",
    "remove_path",
]


def copy_file(src: PathLike, dest: PathLike, *, preserve_times: bool = False) -> None:
    """
    Copy the regular file ``src`` to the new path ``dest``.

    Missing parent directories of ``dest`` are created. Content and permission
    bits are copied; timestamps are copied only when ``preserve_times`` is set.
    Copying a path onto itself is a no-op.
    """

    src_text = os.fspath(src)
    dest_text = os.fspath(dest)
    if src_text == dest_text:
        return
    if not src_text:
        raise MergeNotFoundError("copy_file: source path not set", operation="copy")
    if not dest_text:
        raise MergeNotFoundError(
            "copy_file: destination path not set", path=src_text, operation="copy"
        )

    source = Path(src_text)
    target = Path(dest_text)

    try:
        info = source.stat()
    except OSError as exc:
        raise wrap_os_error(exc, path=source, operation="stat") from exc

    if stat.S_ISDIR(info.st_mode):
        raise MergeIsADirectoryError(
            f"copy_file: source is a directory: {source}", path=source, operation="copy"
        )
    if not stat.S_ISREG(info.st_mode):
        raise MergeIOError(
            f"copy_file: source is not a regular file: {source}", path=source, operation="copy"
        )

    try:
        target.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise wrap_os_error(exc, path=target.parent, operation="mkdir") from exc

    try:
        fd = os.open(target, _OPEN_FLAGS, stat.S_IMODE(info.st_mode))
    except OSError as exc:
        raise wrap_os_error(exc, path=target, operation="create") from exc

    try:
        with os.fdopen(fd, "wb") as writer, source.open("rb") as reader:
            shutil.copyfileobj(reader, writer)
            writer.flush()
        shutil.copymode(source, target)
        if preserve_times:
            os.utime(target, ns=(info.st_atime_ns, info.st_mtime_ns))
    except OSError as exc:
        with contextlib.suppress(OSError):
            target.unlink(missing_ok=True)
        raise wrap_os_error(exc, path=target, operation="copy") from exc


def remove_path(path: PathLike) -> None:
    """
    Delete a file, symlink or directory subtree.

    A path that no longer exists counts as removed. Symlinks are unlinked
    without traversing into their targets.
    """

    target = Path(path)
    try:
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        else:
            target.unlink(missing_ok=True)
    except FileNotFoundError:
        return
    except OSError as exc:
        raise wrap_os_error(exc, path=target, operation="remove") from exc


def is_within(child: PathLike, parent: PathLike) -> bool:
    """Return ``True`` if resolved ``child`` equals or lies below resolved ``parent``."""

    resolved_parent = Path(parent).resolve(strict=False)
    resolved_child = Path(child).resolve(strict=False)
    return _is_relative_to(resolved_child, resolved_parent)


def create_backup_directory(
    prefix: str = DEFAULT_BACKUP_PREFIX,
    parent: PathLike | None = None,
) -> Path:
    """Create a fresh, process-unique backup directory under ``parent`` (default: temp dir)."""

    parent_dir = None if parent is None or not os.fspath(parent) else os.fspath(parent)
    if parent_dir is not None:
        try:
            Path(parent_dir).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise wrap_os_error(exc, path=parent_dir, operation="mkdir") from exc

    try:
        return Path(tempfile.mkdtemp(prefix=prefix, dir=parent_dir))
    except OSError as exc:
        raise wrap_os_error(
            exc, path=parent_dir or tempfile.gettempdir(), operation="mkdtemp"
        ) from exc


def discard_backup_directory(path: PathLike) -> None:
    # Cleanup errors are ignored so they never mask the error that ended the merge.
    shutil.rmtree(path, ignore_errors=True)


@contextmanager
def backup_directory(
    prefix: str = DEFAULT_BACKUP_PREFIX,
    parent: PathLike | None = None,
) -> Iterator[Path]:
    """Yield a new backup directory and remove it on exit, on success and on failure."""

    path = create_backup_directory(prefix, parent)
    try:
        yield path
    finally:
        discard_backup_directory(path)


def _is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
    except ValueError:
        return False
    return True

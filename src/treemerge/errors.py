"""
treemerge: error taxonomy

File: src/treemerge/errors.py

Purpose
- Define the exception hierarchy raised by the file copier, the tree merge
  engine and the merge orchestrator.

Functional requirements
- Every error carries the path and the operation that produced it.
- Low-level ``OSError``s are wrapped into the matching class and chained, never
  replaced silently.
- Rollback failures are aggregated, never dropped.
"""

from __future__ import annotations

import errno
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence


class TreeMergeError(RuntimeError):
    """Base class for every failure raised by treemerge."""

    def __init__(
        self,
        message: str,
        *,
        path: str | Path | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message)
        self.path = None if path is None else Path(path)
        self.operation = operation


class MergeInputError(TreeMergeError, ValueError):
    """Raised for empty, overlapping or otherwise invalid merge roots."""


class MergeNotFoundError(TreeMergeError):
    """Raised when a source root or source entry does not exist."""


class MergeNotADirectoryError(TreeMergeError):
    """Raised when a directory is expected but a file is found."""


class MergeIsADirectoryError(TreeMergeError):
    """Raised when a file is expected but a directory is found."""


class MergeFileExistsError(TreeMergeError):
    """Raised when a pristine copy target already exists."""


class MergeIOError(TreeMergeError):
    """Raised for read, write, stat and rename failures."""


class MergePermissionError(MergeIOError):
    """Raised when the filesystem denies an operation."""


class MergeCancelledError(TreeMergeError):
    """Raised by workers that observe cooperative cancellation."""


@dataclass(frozen=True, slots=True)
class RollbackFailure:
    """One compensating action that could not be applied."""

    description: str
    error: BaseException

    def render(self) -> str:
        return f"{self.description}: {self.error}"


class RollbackError(TreeMergeError):
    """
    Raised when one or more rollback actions failed.

    ``original`` holds the error that triggered the rollback, when there was
    one. Callers must treat the destination as possibly inconsistent.
    """

    def __init__(
        self,
        failures: Sequence[RollbackFailure],
        *,
        original: BaseException | None = None,
    ) -> None:
        self.failures = tuple(failures)
        self.original = original
        lines = [f"{len(self.failures)} rollback action(s) failed:"]
        lines.extend(f"- {failure.render()}" for failure in self.failures)
        if original is not None:
            lines.insert(0, f"merge failed: {original}")
        super().__init__("\n".join(lines), operation="rollback")


_ERRNO_CLASSES: dict[int, type[TreeMergeError]] = {
    errno.ENOENT: MergeNotFoundError,
    errno.ENOTDIR: MergeNotADirectoryError,
    errno.EISDIR: MergeIsADirectoryError,
    errno.EEXIST: MergeFileExistsError,
    errno.EACCES: MergePermissionError,
    errno.EPERM: MergePermissionError,
}


def wrap_os_error(exc: OSError, *, path: str | Path, operation: str) -> TreeMergeError:
    """Return the treemerge error matching ``exc``; callers chain it with ``from``."""

    error_cls = _classify(exc)
    detail = exc.strerror or str(exc)
    return error_cls(f"{operation} {path}: {detail}", path=path, operation=operation)


def _classify(exc: OSError) -> type[TreeMergeError]:
    if isinstance(exc, FileNotFoundError):
        return MergeNotFoundError
    if isinstance(exc, FileExistsError):
        return MergeFileExistsError
    if isinstance(exc, IsADirectoryError):
        return MergeIsADirectoryError
    if isinstance(exc, NotADirectoryError):
        return MergeNotADirectoryError
    if isinstance(exc, PermissionError):
        return MergePermissionError
    if exc.errno is not None:
        return _ERRNO_CLASSES.get(exc.errno, MergeIOError)
    return MergeIOError


__all__ = [
    "MergeCancelledError",
    "MergeFileExistsError",
    "MergeIOError",
    "MergeInputError",
    "MergeIsADirectoryError",
    "MergeNotADirectoryError",
    "MergeNotFoundError",
    "MergePermissionError",
    "RollbackError",
    "RollbackFailure",
    "TreeMergeError",
    "wrap_os_error",
]

"""
Rollback ledger: thread-safe, append-only record of compensating actions.

Workers append from filesystem threads while a merge walks the tree. The
orchestrator replays the ledger once, after every worker has joined, when the
walk fails. Replay runs actions in append order; each action restores one
distinct path and tolerates the path already being in its prior state, so the
order between sibling restores does not matter.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from treemerge.errors import RollbackError, RollbackFailure, wrap_os_error
from treemerge.utils.fs import copy_file, remove_path

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


@dataclass(frozen=True, slots=True)
class RollbackAction:
    """One compensating operation that undoes a single filesystem mutation."""

    description: str
    undo: Callable[[], None]


class RollbackLedger:
    """Ordered, lock-guarded list of rollback actions for one merge invocation."""

    def __init__(self, *, logger: Any | None = None) -> None:
        self._lock = threading.Lock()
        self._actions: list[RollbackAction] = []
        self._replaying = False
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def __len__(self) -> int:
        with self._lock:
            return len(self._actions)

    def descriptions(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(action.description for action in self._actions)

    def append(self, description: str, undo: Callable[[], None]) -> None:
        action = RollbackAction(description=description, undo=undo)
        with self._lock:
            if self._replaying:
                raise RuntimeError("cannot append to a rollback ledger while it is replaying")
            self._actions.append(action)

    def record_created_file(self, path: Path) -> None:
        self.append(f"delete created file {path}", lambda: remove_path(path))

    def record_created_directory(self, path: Path) -> None:
        self.append(f"remove created directory {path}", lambda: remove_path(path))

    def record_overwritten_file(self, backup_path: Path, dest_path: Path) -> None:
        def restore() -> None:
            remove_path(dest_path)
            copy_file(backup_path, dest_path, preserve_times=True)

        self.append(f"restore {dest_path} from backup {backup_path}", restore)

    def record_replaced_symlink(self, dest_path: Path, link_target: str) -> None:
        def relink() -> None:
            remove_path(dest_path)
            try:
                os.symlink(link_target, dest_path)
            except OSError as exc:
                raise wrap_os_error(exc, path=dest_path, operation="symlink") from exc

        self.append(f"restore symlink {dest_path} -> {link_target}", relink)

    def replay(self) -> int:
        """
        Run every recorded undo in append order and clear the ledger.

        Failures do not stop the replay. Returns the number of actions that
        succeeded; raises ``RollbackError`` listing every failed action.
        """

        with self._lock:
            if self._replaying:
                raise RuntimeError("rollback ledger is already replaying")
            self._replaying = True
            actions = list(self._actions)

        failures: list[RollbackFailure] = []
        succeeded = 0
        try:
            for action in actions:
                try:
                    action.undo()
                except Exception as exc:
                    failures.append(RollbackFailure(description=action.description, error=exc))
                    self._logger.error(
                        "merge_rollback_action_failed",
                        description=action.description,
                        error=str(exc),
                    )
                    continue
                succeeded += 1
                self._logger.info(
                    "merge_rollback_action_succeeded",
                    description=action.description,
                )
        finally:
            with self._lock:
                self._actions.clear()
                self._replaying = False

        if failures:
            raise RollbackError(failures)
        return succeeded


__all__ = [
    "RollbackAction",
    "RollbackLedger",
]

"""Utility exports for filesystem and concurrency helpers."""

from treemerge.utils.concurrency import (
    BoundedSemaphore,
    CancellationToken,
    CooperativeTaskGroup,
    run_in_thread_to_completion,
)
from treemerge.utils.fs import (
    backup_directory,
    copy_file,
    create_backup_directory,
    discard_backup_directory,
    is_within,
    remove_path,
)

__all__ = [
    "BoundedSemaphore",
    "CancellationToken",
    "CooperativeTaskGroup",
    "backup_directory",
    "copy_file",
    "create_backup_directory",
    "discard_backup_directory",
    "is_within",
    "remove_path",
    "run_in_thread_to_completion",
]

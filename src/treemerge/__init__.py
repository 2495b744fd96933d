"""
treemerge: transactional directory merge

File: src/treemerge/__init__.py

Purpose
- Package root. Publishes a staging tree into a live output directory so a
  failure never leaves the output half-updated.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
- Keep the public surface small; everything else lives in the subpackages.
"""

from treemerge.errors import RollbackError, TreeMergeError
from treemerge.merge.orchestrator import (
    MergeOrchestrator,
    MergeReport,
    merge_directories,
    merge_directories_async,
)
from treemerge.merge.publish import publish_staging, publish_staging_async

__version__ = "0.1.0"

__all__ = [
    "MergeOrchestrator",
    "MergeReport",
    "RollbackError",
    "TreeMergeError",
    "__version__",
    "merge_directories",
    "merge_directories_async",
    "publish_staging",
    "publish_staging_async",
]

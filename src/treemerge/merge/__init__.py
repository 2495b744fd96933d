"""Transactional directory merge: ledger, engine, orchestrator and publisher."""

from treemerge.merge.engine import MergeRequest, MergeStats, TreeMergeEngine
from treemerge.merge.ledger import RollbackAction, RollbackLedger
from treemerge.merge.orchestrator import (
    MergeOrchestrator,
    MergePhase,
    MergeReport,
    MergeStatus,
    merge_directories,
    merge_directories_async,
)
from treemerge.merge.publish import publish_staging, publish_staging_async

__all__ = [
    "MergeOrchestrator",
    "MergePhase",
    "MergeReport",
    "MergeRequest",
    "MergeStats",
    "MergeStatus",
    "RollbackAction",
    "RollbackLedger",
    "TreeMergeEngine",
    "merge_directories",
    "merge_directories_async",
    "publish_staging",
    "publish_staging_async",
]

"""Publish a freshly generated staging tree into a live output directory."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from treemerge.merge.orchestrator import MergeOrchestrator, MergeReport, MergeStatus
from treemerge.utils.fs import PathLike, remove_path

if TYPE_CHECKING:
    from treemerge.config.schema import MergeSettings
    from treemerge.utils.concurrency import CancellationToken

logger = structlog.get_logger(__name__)


async def publish_staging_async(
    staging_root: PathLike,
    output_root: PathLike,
    *,
    remove_staging: bool = True,
    settings: MergeSettings | None = None,
    cancel_token: CancellationToken | None = None,
    orchestrator: MergeOrchestrator | None = None,
) -> MergeReport:
    """
    Merge ``staging_root`` into ``output_root`` and then drop the staging tree.

    The staging tree is removed only after a committed merge. When the merge
    fails it is rolled back and the staging tree stays in place for
    inspection. Publishing a directory onto itself leaves it untouched.
    """

    runner = orchestrator if orchestrator is not None else MergeOrchestrator(settings)
    report = await runner.merge(staging_root, output_root, cancel_token=cancel_token)
    if report.status is MergeStatus.COMMITTED and remove_staging:
        await asyncio.to_thread(remove_path, report.source_root)
        logger.info(
            "staging_removed",
            merge_id=report.merge_id,
            staging_root=str(report.source_root),
        )
    return report


def publish_staging(
    staging_root: PathLike,
    output_root: PathLike,
    *,
    remove_staging: bool = True,
    settings: MergeSettings | None = None,
    **kwargs: Any,
) -> MergeReport:
    """Blocking wrapper around ``publish_staging_async``."""

    return asyncio.run(
        publish_staging_async(
            Path(staging_root),
            Path(output_root),
            remove_staging=remove_staging,
            settings=settings,
            **kwargs,
        )
    )


__all__ = ["publish_staging", "publish_staging_async"]

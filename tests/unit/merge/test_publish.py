"""Unit tests for publishing a staging tree into an output directory."""

from __future__ import annotations

from pathlib import Path

import pytest

from treemerge.config.schema import MergeSettings
from treemerge.errors import MergeIOError
from treemerge.merge.orchestrator import MergeOrchestrator, MergeStatus
from treemerge.merge.publish import publish_staging, publish_staging_async
from treemerge.utils.fs import copy_file


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def _settings(tmp_path: Path) -> MergeSettings:
    return MergeSettings(backup_parent=str(tmp_path / "backups"))


async def test_publish_merges_and_removes_staging(tmp_path: Path) -> None:
    staging = tmp_path / "generated"
    output = tmp_path / "public"
    _write(staging / "index.html", "home")
    _write(staging / "posts" / "a.html", "a")
    _write(output / "robots.txt", "keep")

    report = await publish_staging_async(staging, output, settings=_settings(tmp_path))

    assert report.status is MergeStatus.COMMITTED
    assert not staging.exists()
    assert (output / "index.html").read_text(encoding="utf-8") == "home"
    assert (output / "posts" / "a.html").read_text(encoding="utf-8") == "a"
    assert (output / "robots.txt").read_text(encoding="utf-8") == "keep"


async def test_publish_can_keep_staging(tmp_path: Path) -> None:
    staging = tmp_path / "generated"
    _write(staging / "index.html", "home")

    await publish_staging_async(
        staging, tmp_path / "public", remove_staging=False, settings=_settings(tmp_path)
    )

    assert (staging / "index.html").exists()


async def test_publish_keeps_staging_when_merge_fails(tmp_path: Path) -> None:
    staging = tmp_path / "generated"
    output = tmp_path / "public"
    _write(staging / "a.html", "a")
    _write(staging / "b.html", "b")
    output.mkdir()

    def failing_copy(src: Path, dest: Path) -> None:
        if src.name == "b.html":
            raise MergeIOError("disk full", path=dest, operation="copy")
        copy_file(src, dest)

    orchestrator = MergeOrchestrator(_settings(tmp_path), copy_fn=failing_copy)
    with pytest.raises(MergeIOError, match="disk full"):
        await publish_staging_async(staging, output, orchestrator=orchestrator)

    assert sorted(path.name for path in staging.iterdir()) == ["a.html", "b.html"]
    assert list(output.iterdir()) == []


async def test_publish_onto_itself_keeps_directory(tmp_path: Path) -> None:
    staging = tmp_path / "generated"
    _write(staging / "index.html", "home")

    report = await publish_staging_async(staging, staging, settings=_settings(tmp_path))

    assert report.status is MergeStatus.NOOP
    assert (staging / "index.html").exists()


def test_publish_staging_blocking_wrapper(tmp_path: Path) -> None:
    staging = tmp_path / "generated"
    _write(staging / "feed.xml", "<rss/>")

    publish_staging(str(staging), str(tmp_path / "public"), settings=_settings(tmp_path))

    assert not staging.exists()
    assert (tmp_path / "public" / "feed.xml").read_text(encoding="utf-8") == "<rss/>"

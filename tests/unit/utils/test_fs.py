"""
treemerge: unit tests for filesystem utilities

File: tests/unit/utils/test_fs.py

Purpose
- Validate the exclusive-create file copy, idempotent removal and ephemeral
  backup directories.

What this test file should cover
- Copy error classification (missing, directory, existing destination).
- No partial destination after a failed copy.
- Permission bits and optional timestamp preservation.
- Backup directory cleanup on success and on failure.
"""

from __future__ import annotations

import os
import stat
import sys
from typing import TYPE_CHECKING

import pytest

from treemerge.errors import (
    MergeFileExistsError,
    MergeIOError,
    MergeIsADirectoryError,
    MergeNotFoundError,
)
from treemerge.utils import fs
from treemerge.utils.fs import backup_directory, copy_file, is_within, remove_path

if TYPE_CHECKING:
    from pathlib import Path


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_copy_file_creates_parents_and_copies_content(tmp_path: Path) -> None:
    src = _write(tmp_path / "src" / "page.html", "<p>hello</p>")
    dest = tmp_path / "out" / "nested" / "deeper" / "page.html"

    copy_file(src, dest)

    assert dest.read_text(encoding="utf-8") == "<p>hello</p>"


def test_copy_file_onto_itself_is_noop(tmp_path: Path) -> None:
    src = _write(tmp_path / "same.txt", "unchanged")

    copy_file(src, src)
    copy_file(str(tmp_path / "missing.txt"), str(tmp_path / "missing.txt"))

    assert src.read_text(encoding="utf-8") == "unchanged"
    assert not (tmp_path / "missing.txt").exists()


@pytest.mark.parametrize(("src", "dest"), [("", "dest.txt"), ("src.txt", "")])
def test_copy_file_rejects_empty_paths(src: str, dest: str) -> None:
    with pytest.raises(MergeNotFoundError, match="not set"):
        copy_file(src, dest)


def test_copy_file_missing_source_raises_not_found(tmp_path: Path) -> None:
    dest = tmp_path / "dest.txt"

    with pytest.raises(MergeNotFoundError) as excinfo:
        copy_file(tmp_path / "absent.txt", dest)

    assert excinfo.value.path == tmp_path / "absent.txt"
    assert excinfo.value.operation == "stat"
    assert not dest.exists()


def test_copy_file_directory_source_raises_is_a_directory(tmp_path: Path) -> None:
    src_dir = tmp_path / "dir"
    src_dir.mkdir()

    with pytest.raises(MergeIsADirectoryError):
        copy_file(src_dir, tmp_path / "dest")

    assert not (tmp_path / "dest").exists()


def test_copy_file_never_overwrites_existing_destination(tmp_path: Path) -> None:
    src = _write(tmp_path / "src.txt", "new")
    dest = _write(tmp_path / "dest.txt", "old")

    with pytest.raises(MergeFileExistsError) as excinfo:
        copy_file(src, dest)

    assert excinfo.value.operation == "create"
    assert dest.read_text(encoding="utf-8") == "old"


def test_copy_file_failure_leaves_no_partial_destination(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    src = _write(tmp_path / "src.bin", "x" * 4096)
    dest = tmp_path / "dest.bin"

    def broken_copy(reader: object, writer: object) -> None:
        raise OSError(5, "Input/output error")

    monkeypatch.setattr(fs.shutil, "copyfileobj", broken_copy)

    with pytest.raises(MergeIOError) as excinfo:
        copy_file(src, dest)

    assert excinfo.value.operation == "copy"
    assert isinstance(excinfo.value.__cause__, OSError)
    assert not dest.exists()


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX permission bits")
def test_copy_file_copies_permission_bits(tmp_path: Path) -> None:
    src = _write(tmp_path / "run.sh", "#!/bin/sh\n")
    src.chmod(0o750)
    dest = tmp_path / "out" / "run.sh"

    copy_file(src, dest)

    assert stat.S_IMODE(dest.stat().st_mode) == 0o750


def test_copy_file_preserve_times_copies_mtime(tmp_path: Path) -> None:
    src = _write(tmp_path / "src.txt", "dated")
    stamp_ns = 1_600_000_000_000_000_000
    os.utime(src, ns=(stamp_ns, stamp_ns))

    preserved = tmp_path / "preserved.txt"
    fresh = tmp_path / "fresh.txt"
    copy_file(src, preserved, preserve_times=True)
    copy_file(src, fresh)

    assert preserved.stat().st_mtime_ns == stamp_ns
    assert fresh.stat().st_mtime_ns != stamp_ns


def test_remove_path_handles_files_directories_and_missing_paths(tmp_path: Path) -> None:
    file_path = _write(tmp_path / "file.txt", "x")
    tree = tmp_path / "tree"
    _write(tree / "a" / "b.txt", "y")

    remove_path(file_path)
    remove_path(tree)
    remove_path(tmp_path / "never-existed")
    remove_path(file_path)

    assert not file_path.exists()
    assert not tree.exists()


@pytest.mark.skipif(sys.platform == "win32", reason="symlinks require privileges on Windows")
def test_remove_path_unlinks_symlink_without_touching_target(tmp_path: Path) -> None:
    target = tmp_path / "target"
    _write(target / "keep.txt", "keep")
    link = tmp_path / "link"
    link.symlink_to(target, target_is_directory=True)

    remove_path(link)

    assert not link.exists()
    assert (target / "keep.txt").read_text(encoding="utf-8") == "keep"


def test_is_within_compares_resolved_paths(tmp_path: Path) -> None:
    parent = tmp_path / "root"
    child = parent / "a" / ".." / "b"

    assert is_within(child, parent)
    assert is_within(parent, parent)
    assert not is_within(tmp_path / "rootless", parent)
    assert not is_within(tmp_path, parent)


def test_backup_directory_is_unique_and_removed_after_use(tmp_path: Path) -> None:
    parent = tmp_path / "backups"

    with backup_directory("tm-", parent) as first, backup_directory("tm-", parent) as second:
        assert first != second
        assert first.is_dir()
        assert first.parent == parent
        assert first.name.startswith("tm-")
        _write(first / "nested" / "file.txt", "backup")

    assert list(parent.iterdir()) == []


def test_backup_directory_is_removed_when_block_raises(tmp_path: Path) -> None:
    parent = tmp_path / "backups"

    with pytest.raises(RuntimeError, match="boom"), backup_directory("tm-", parent) as backup:
        _write(backup / "file.txt", "backup")
        raise RuntimeError("boom")

    assert list(parent.iterdir()) == []


def test_backup_directory_defaults_to_system_temp_dir() -> None:
    with backup_directory() as backup:
        assert backup.is_dir()
        assert backup.name.startswith("treemerge-bak-")

    assert not backup.exists()

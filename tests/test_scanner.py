import os

import pytest

from mirrorbot.exceptions import SyncIOError
from mirrorbot.filters import build_path_filter
from mirrorbot.models import FileRecord
from mirrorbot.scanner import record_paths, scan_tree

from conftest import link, write


def test_records_files_and_symlinks_relative_to_root(tmp_path):
    write(tmp_path / "a.txt", "a")
    write(tmp_path / "sub" / "b.txt", "b")
    link(tmp_path / "sub" / "c.txt", tmp_path / "a.txt")

    records = scan_tree(tmp_path)

    assert records == [
        FileRecord(path="a.txt", is_symlink=False),
        FileRecord(path="sub/b.txt", is_symlink=False),
        FileRecord(path="sub/c.txt", is_symlink=True),
    ]


def test_directories_are_traversed_not_recorded(tmp_path):
    (tmp_path / "empty" / "nested").mkdir(parents=True)

    assert scan_tree(tmp_path) == []


def test_dangling_symlink_is_recorded(tmp_path):
    link(tmp_path / "ghost", tmp_path / "does-not-exist")

    assert scan_tree(tmp_path) == [FileRecord(path="ghost", is_symlink=True)]


def test_symlinked_directory_is_recorded_and_not_followed(tmp_path):
    target = tmp_path / "elsewhere"
    write(target / "inner.txt", "x")
    root = tmp_path / "root"
    root.mkdir()
    link(root / "linked-dir", target)

    assert scan_tree(root) == [FileRecord(path="linked-dir", is_symlink=True)]


def test_special_characters_in_names(tmp_path):
    write(tmp_path / "with space" / "ünïcode [1].txt", "x")

    assert record_paths(scan_tree(tmp_path)) == {"with space/ünïcode [1].txt"}


def test_path_filter_and_skip(tmp_path):
    write(tmp_path / "keep.txt")
    write(tmp_path / "cache" / "drop.bin")
    write(tmp_path / "notes.tmp")
    snapshot = write(tmp_path / "snapshot.db")

    records = scan_tree(
        tmp_path,
        path_filter=build_path_filter(["cache/", "*.tmp"]),
        skip=[snapshot],
    )

    assert record_paths(records) == {"keep.txt"}


def test_missing_root_raises(tmp_path):
    with pytest.raises(SyncIOError) as excinfo:
        scan_tree(tmp_path / "missing")

    assert excinfo.value.operation == "scan"


def test_root_that_is_a_file_raises(tmp_path):
    path = write(tmp_path / "file.txt")

    with pytest.raises(SyncIOError):
        scan_tree(path)


@pytest.mark.skipif(os.geteuid() == 0, reason="root can read any directory")
def test_unreadable_subdirectory_raises(tmp_path):
    locked = tmp_path / "locked"
    write(locked / "secret.txt")
    locked.chmod(0)
    try:
        with pytest.raises(SyncIOError):
            scan_tree(tmp_path)
    finally:
        locked.chmod(0o755)

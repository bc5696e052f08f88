from __future__ import annotations

import os
from collections.abc import Collection, Iterable
from pathlib import Path

from loguru import logger

from mirrorbot.exceptions import SyncIOError
from mirrorbot.filters import PathFilter
from mirrorbot.models import FileRecord


def _raise_scan_error(exc: OSError) -> None:
    raise SyncIOError("scan", exc.filename or "", exc.strerror) from exc


def _discover_entries(root: Path) -> Iterable[tuple[Path, bool]]:
    if not root.is_dir():
        raise SyncIOError("scan", root, "not a directory")

    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise_scan_error):
        current = Path(dirpath)
        # os.walk lists symlinks to directories under dirnames and never descends
        # into them, so they are recorded here as plain symlink entries.
        for name in dirnames:
            entry = current / name
            if entry.is_symlink():
                yield entry, True
        for name in filenames:
            entry = current / name
            if entry.is_symlink():
                yield entry, True
            elif entry.is_file():
                yield entry, False


def scan_tree(
    root: Path,
    *,
    path_filter: PathFilter | None = None,
    skip: Collection[Path] = (),
) -> list[FileRecord]:
    """Enumerate regular files and symlinks below ``root``.

    Symlinks are reported without being followed, so dangling links and links to
    directories both show up as ``is_symlink=True`` records.
    """
    root = Path(root)
    path_filter = path_filter or PathFilter()
    skipped = {Path(path).absolute() for path in skip}
    records: list[FileRecord] = []

    for entry, is_symlink in _discover_entries(root):
        if entry.absolute() in skipped:
            continue
        relative_path = entry.relative_to(root).as_posix()
        if not path_filter.matches(relative_path):
            continue
        records.append(FileRecord(path=relative_path, is_symlink=is_symlink))

    records.sort(key=lambda r: r.path)
    logger.debug(f"Scanned {root}: {len(records)} entr{'y' if len(records) == 1 else 'ies'}")
    return records


def record_paths(records: Iterable[FileRecord]) -> set[str]:
    return {record.path for record in records}

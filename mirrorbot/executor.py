"""Filesystem operations applied by a reconciliation pass.

Each operation can be repeated safely: re-running it against a tree where it
already took effect leaves the tree unchanged.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path

from loguru import logger

from mirrorbot.exceptions import SyncIOError


def _entry_path(root: Path, relative_path: str) -> Path:
    # Never resolve: the entry may itself be a symlink.
    return Path(root) / Path(relative_path)


def _lexists(path: Path) -> bool:
    return path.is_symlink() or path.exists()


def _prune_empty_parents(root: Path, path: Path) -> None:
    current = path.parent
    while current != root and root in current.parents:
        try:
            current.rmdir()
        except OSError:
            break
        current = current.parent


def remove_path(root: Path, relative_path: str) -> bool:
    """Delete ``root/relative_path``. Returns ``False`` when it was already gone."""
    root = Path(root)
    path = _entry_path(root, relative_path)
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise SyncIOError("remove", path, exc.strerror) from exc

    _prune_empty_parents(root, path)
    logger.debug(f"Removed {path}")
    return True


def symlink_path(from_dir: Path, to_dir: Path, relative_path: str) -> bool:
    """Create ``to_dir/relative_path`` as a symlink to ``from_dir/relative_path``.

    Returns ``False`` when the correct symlink is already in place. Anything else
    occupying the destination is an error: callers only ask for paths the
    replica is missing.
    """
    target = Path(from_dir).absolute() / Path(relative_path)
    link = _entry_path(to_dir, relative_path)

    if link.is_symlink():
        try:
            current_target = os.readlink(link)
        except OSError as exc:
            raise SyncIOError("symlink", link, exc.strerror) from exc
        if Path(current_target) == target:
            return False
        raise SyncIOError("symlink", link, f"already links to {current_target}")
    if link.exists():
        raise SyncIOError("symlink", link, "destination exists and is not a symlink")

    try:
        link.parent.mkdir(parents=True, exist_ok=True)
        link.symlink_to(target)
    except OSError as exc:
        raise SyncIOError("symlink", link, exc.strerror) from exc

    logger.debug(f"Linked {link} -> {target}")
    return True


def absorb_path(replica_dir: Path, primary_dir: Path, relative_path: str) -> bool:
    """Move a regular replica file into the primary and link it back.

    The move always happens before the link is created, so an interrupted
    absorption leaves the file either still in the replica or already in the
    primary, never in both and never in neither. A source that is missing or
    already a symlink counts as an absorption that already happened.
    """
    source = _entry_path(replica_dir, relative_path)
    destination = _entry_path(primary_dir, relative_path)

    if source.is_symlink() or not source.exists():
        if _lexists(destination):
            symlink_path(primary_dir, replica_dir, relative_path)
        return False
    if destination.is_dir() and not destination.is_symlink():
        raise SyncIOError("move", source, f"{destination} is a directory")

    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(os.fspath(source), os.fspath(destination))
    except OSError as exc:
        raise SyncIOError("move", source, exc.strerror or str(exc)) from exc

    logger.debug(f"Moved {source} -> {destination}")
    symlink_path(primary_dir, replica_dir, relative_path)
    return True

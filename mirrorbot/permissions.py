from __future__ import annotations

import os
from pathlib import Path

from loguru import logger

from mirrorbot.exceptions import SyncIOError


def _apply(path: Path, *, mode: int | None, uid: int, gid: int, is_symlink: bool) -> None:
    try:
        # Symlink modes are meaningless on Linux and chmod would follow the
        # link into the primary, so links only get their ownership changed.
        if mode is not None and not is_symlink:
            os.chmod(path, mode)
        if uid != -1 or gid != -1:
            os.chown(path, uid, gid, follow_symlinks=False)
    except OSError as exc:
        raise SyncIOError("set permissions", path, exc.strerror) from exc


def set_permissions(
    root: Path,
    *,
    permissions: int | None = None,
    puid: int | None = None,
    pgid: int | None = None,
) -> int:
    """Recursively apply a mode and owner to everything below ``root``.

    Returns the number of entries touched, including ``root`` itself.
    """
    root = Path(root)
    uid = -1 if puid is None else puid
    gid = -1 if pgid is None else pgid
    if permissions is None and uid == -1 and gid == -1:
        return 0

    def _raise(exc: OSError) -> None:
        raise SyncIOError("set permissions", exc.filename or root, exc.strerror) from exc

    touched = 0
    _apply(root, mode=permissions, uid=uid, gid=gid, is_symlink=False)
    touched += 1
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
        current = Path(dirpath)
        for name in (*dirnames, *filenames):
            entry = current / name
            _apply(entry, mode=permissions, uid=uid, gid=gid, is_symlink=entry.is_symlink())
            touched += 1

    logger.debug(f"Applied permissions to {touched} entr{'y' if touched == 1 else 'ies'} under {root}")
    return touched

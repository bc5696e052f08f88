"""Persistence of the replica path set between runs.

The snapshot is a small SQLite database. Saving always builds a fresh database
next to the target and renames it into place, so an interrupted save leaves the
previous snapshot intact.
"""

from __future__ import annotations

import os
import sqlite3
from collections.abc import Iterable, Mapping
from contextlib import suppress
from pathlib import Path

import aiosqlite
from loguru import logger

from mirrorbot.exceptions import SyncIOError


TEMP_SUFFIX = ".tmp"

PATHS_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS snapshot_paths (
    path TEXT PRIMARY KEY
);
"""

META_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS snapshot_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


def temp_path_for(snapshot_path: Path) -> Path:
    snapshot_path = Path(snapshot_path)
    return snapshot_path.with_name(snapshot_path.name + TEMP_SUFFIX)


def _read_only_uri(snapshot_path: Path) -> str:
    return f"{Path(snapshot_path).absolute().as_uri()}?mode=ro"


async def load_snapshot(snapshot_path: Path) -> set[str]:
    snapshot_path = Path(snapshot_path)
    if not snapshot_path.exists():
        logger.debug(f"No snapshot at {snapshot_path}, starting from an empty set")
        return set()

    try:
        async with aiosqlite.connect(_read_only_uri(snapshot_path), uri=True) as db:
            cursor = await db.execute("SELECT path FROM snapshot_paths ORDER BY path")
            rows = await cursor.fetchall()
            await cursor.close()
    except (OSError, sqlite3.Error) as exc:
        raise SyncIOError("load snapshot", snapshot_path, str(exc)) from exc

    return {str(row[0]) for row in rows}


async def save_snapshot(
    snapshot_path: Path,
    paths: Iterable[str],
    *,
    meta: Mapping[str, str] | None = None,
) -> None:
    snapshot_path = Path(snapshot_path)
    temp_path = temp_path_for(snapshot_path)
    rows = [(path,) for path in sorted(set(paths))]

    try:
        snapshot_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path.unlink(missing_ok=True)
        async with aiosqlite.connect(temp_path) as db:
            await db.execute(PATHS_SCHEMA_SQL)
            await db.execute(META_SCHEMA_SQL)
            if rows:
                await db.executemany("INSERT INTO snapshot_paths (path) VALUES (?)", rows)
            if meta:
                await db.executemany(
                    "INSERT OR REPLACE INTO snapshot_meta (key, value) VALUES (?, ?)",
                    list(meta.items()),
                )
            await db.commit()
        os.replace(temp_path, snapshot_path)
    except (OSError, sqlite3.Error) as exc:
        with suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise SyncIOError("save snapshot", snapshot_path, str(exc)) from exc

    logger.debug(f"Saved snapshot with {len(rows)} path(s) to {snapshot_path}")


async def get_meta(snapshot_path: Path, key: str) -> str | None:
    snapshot_path = Path(snapshot_path)
    if not snapshot_path.exists():
        return None

    try:
        async with aiosqlite.connect(_read_only_uri(snapshot_path), uri=True) as db:
            cursor = await db.execute(
                "SELECT value FROM snapshot_meta WHERE key = ?",
                (key,),
            )
            row = await cursor.fetchone()
            await cursor.close()
    except (OSError, sqlite3.Error) as exc:
        raise SyncIOError("load snapshot", snapshot_path, str(exc)) from exc

    if row is None:
        return None
    return str(row[0])

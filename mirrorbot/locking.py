"""Exclusive lock file serializing runs against one primary/replica/snapshot triple.

The lock lives next to the snapshot as ``<snapshot>.lock`` and records which
process holds it. A lock left behind by a process that no longer exists on
this host is considered stale and is replaced.
"""

from __future__ import annotations

import json
import os
import socket
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path

from loguru import logger

from mirrorbot.exceptions import LockConflictError, LockError


LOCK_SUFFIX = ".lock"


def lock_path_for(snapshot_path: Path) -> Path:
    snapshot_path = Path(snapshot_path)
    return snapshot_path.with_name(snapshot_path.name + LOCK_SUFFIX)


@dataclass(slots=True)
class LockInfo:
    pid: int
    hostname: str
    timestamp: str

    @classmethod
    def current(cls) -> "LockInfo":
        return cls(
            pid=os.getpid(),
            hostname=socket.gethostname(),
            timestamp=datetime.now(UTC).isoformat(),
        )

    @classmethod
    def from_dict(cls, data: dict) -> "LockInfo":
        return cls(
            pid=int(data["pid"]),
            hostname=str(data["hostname"]),
            timestamp=str(data["timestamp"]),
        )


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class RunLock:
    """
    Usage as context manager:
        with RunLock(lock_path_for(snapshot)):
            await reconcile(...)
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._acquired = False

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def read_info(self) -> LockInfo | None:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return LockInfo.from_dict(data)
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError):
            logger.warning(f"Unreadable lock file {self.path}")
            return None

    def _is_stale(self, info: LockInfo | None) -> bool:
        if info is None:
            return False
        return info.hostname == socket.gethostname() and not _pid_alive(info.pid)

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(asdict(LockInfo.current()))

        for _ in range(2):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                info = self.read_info()
                if self._is_stale(info):
                    logger.warning(f"Removing stale lock {self.path} held by pid {info.pid}")
                    self.path.unlink(missing_ok=True)
                    continue
                holder = f"pid {info.pid} on {info.hostname}" if info else "unknown process"
                raise LockConflictError(f"Lock {self.path} is held by {holder}")
            except OSError as exc:
                raise LockError(f"Cannot create lock {self.path}: {exc.strerror}") from exc

            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            self._acquired = True
            logger.debug(f"Acquired lock {self.path}")
            return

        raise LockConflictError(f"Lock {self.path} could not be acquired")

    def release(self) -> None:
        if not self._acquired:
            return
        self.path.unlink(missing_ok=True)
        self._acquired = False
        logger.debug(f"Released lock {self.path}")

"""Exception types raised by Mirror Bot.

Every failure inside a reconciliation pass surfaces to callers as a
``ReconciliationError`` whose ``__cause__`` is one of the specific errors below.
"""

from __future__ import annotations

from pathlib import Path


class MirrorBotError(Exception):
    """Base exception for all Mirror Bot errors."""


class ConfigError(MirrorBotError):
    """Raised when an option or config file cannot be parsed."""


class SyncIOError(MirrorBotError):
    """Raised when a filesystem operation fails.

    Always chained from the underlying ``OSError`` (or ``sqlite3.Error`` for the
    snapshot store) so the original errno and message stay available.
    """

    def __init__(self, operation: str, path: Path | str, reason: str | None = None) -> None:
        self.operation = operation
        self.path = str(path)
        message = f"{operation} failed for {self.path}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class SafeDeleteExceeded(MirrorBotError):
    """Raised when a deletion phase would remove more entries than allowed."""

    def __init__(self, count: int, limit: int, phase: str | None = None) -> None:
        self.count = count
        self.limit = limit
        self.phase = phase
        where = f" in {phase}" if phase else ""
        super().__init__(
            f"Refusing to delete {count} item(s){where}: safe delete limit is {limit}"
        )


class ReconciliationError(MirrorBotError):
    """Top-level failure of a reconciliation pass."""

    @property
    def cause(self) -> BaseException | None:
        return self.__cause__

    def full_message(self) -> str:
        parts = [str(self)]
        current = self.__cause__
        seen: set[int] = set()
        while current is not None and id(current) not in seen:
            seen.add(id(current))
            parts.append(f"{current.__class__.__name__}: {current}")
            current = current.__cause__ or current.__context__
        return "\ncaused by: ".join(parts)


class LockError(MirrorBotError):
    """Base exception for run lock errors."""


class LockConflictError(LockError):
    """Raised when the run lock is held by another live process."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from mirrorbot.exceptions import ConfigError


DEFAULT_SAFE_DELETE_LIMIT = 10

Phase = Literal[
    "load_snapshot",
    "delete_primary",
    "absorb",
    "symlink",
    "delete_replica",
    "save_snapshot",
    "permissions",
]
Stage = Literal["started", "completed", "failed"]


@dataclass(slots=True, frozen=True)
class FileRecord:
    path: str
    is_symlink: bool


@dataclass(slots=True, frozen=True)
class SyncOptions:
    safe_delete_limit: int = DEFAULT_SAFE_DELETE_LIMIT
    permissions: int | None = None
    puid: int | None = None
    pgid: int | None = None
    exclude_patterns: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.safe_delete_limit < 0:
            raise ConfigError("safe_delete_limit must be >= 0")


@dataclass(slots=True)
class PhaseEvent:
    phase: Phase
    stage: Stage
    paths: list[str] = field(default_factory=list)
    error: BaseException | None = None


@dataclass(slots=True)
class ReconcileResult:
    deleted_primary_paths: list[str]
    absorbed_paths: list[str]
    symlinked_paths: list[str]
    deleted_replica_paths: list[str]
    snapshot_count: int

    @property
    def has_changes(self) -> bool:
        return bool(
            self.deleted_primary_paths
            or self.absorbed_paths
            or self.symlinked_paths
            or self.deleted_replica_paths
        )

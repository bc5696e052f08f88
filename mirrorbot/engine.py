from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from loguru import logger

from mirrorbot.diff import missing_from, unsynced_in
from mirrorbot.exceptions import ReconciliationError
from mirrorbot.executor import absorb_path, remove_path, symlink_path
from mirrorbot.filters import build_path_filter
from mirrorbot.guard import guard_deletions
from mirrorbot.locking import lock_path_for
from mirrorbot.models import FileRecord, Phase, PhaseEvent, ReconcileResult, SyncOptions
from mirrorbot.permissions import set_permissions
from mirrorbot.scanner import record_paths, scan_tree
from mirrorbot.snapshot import load_snapshot, save_snapshot, temp_path_for


EventCallback = Callable[[PhaseEvent], None]


class _PassRunner:
    """Scans and emits events for a single pass over one primary/replica pair."""

    def __init__(
        self,
        primary: Path,
        replica: Path,
        snapshot_path: Path,
        options: SyncOptions,
        on_event: EventCallback | None,
    ) -> None:
        self.primary = primary
        self.replica = replica
        self.snapshot_path = snapshot_path
        self.options = options
        self.on_event = on_event
        self.path_filter = build_path_filter(options.exclude_patterns)
        self.skip = (
            snapshot_path,
            temp_path_for(snapshot_path),
            lock_path_for(snapshot_path),
        )

    def scan(self, root: Path) -> list[FileRecord]:
        return scan_tree(root, path_filter=self.path_filter, skip=self.skip)

    def emit(self, event: PhaseEvent) -> None:
        if event.stage == "failed":
            logger.error(f"[{event.phase}] failed: {event.error}")
        elif event.stage == "completed":
            logger.info(f"[{event.phase}] completed ({len(event.paths)} path(s))")
            for path in event.paths:
                logger.debug(f"[{event.phase}] {path}")
        else:
            logger.info(f"[{event.phase}] started")
        if self.on_event is not None:
            self.on_event(event)

    @contextmanager
    def phase(self, name: Phase) -> Iterator[list[str]]:
        paths: list[str] = []
        self.emit(PhaseEvent(phase=name, stage="started"))
        try:
            yield paths
        except Exception as exc:
            self.emit(PhaseEvent(phase=name, stage="failed", paths=paths, error=exc))
            raise
        self.emit(PhaseEvent(phase=name, stage="completed", paths=list(paths)))


def _resolve_root(path: Path | str) -> Path:
    return Path(path).expanduser().resolve()


def _make_runner(
    primary: Path | str,
    replica: Path | str,
    snapshot_path: Path | str,
    options: SyncOptions,
    on_event: EventCallback | None,
) -> _PassRunner:
    return _PassRunner(
        _resolve_root(primary),
        _resolve_root(replica),
        _resolve_root(snapshot_path),
        options,
        on_event,
    )


async def _run_phases(runner: _PassRunner) -> ReconcileResult:
    primary, replica = runner.primary, runner.replica
    limit = runner.options.safe_delete_limit

    # Excluded paths are dropped from the snapshot too, otherwise a newly added
    # pattern would make them look deleted from the replica.
    with runner.phase("load_snapshot") as loaded:
        previous_replica_paths = runner.path_filter.filter_paths(
            await load_snapshot(runner.snapshot_path)
        )
        loaded.extend(sorted(previous_replica_paths))

    # Replica-side deletions since the last run are propagated to the primary.
    with runner.phase("delete_primary") as deleted_primary:
        to_delete = missing_from(previous_replica_paths, runner.scan(replica))
        for path in sorted(guard_deletions(limit, to_delete, phase="delete_primary")):
            remove_path(primary, path)
            deleted_primary.append(path)

    with runner.phase("absorb") as absorbed:
        replica_records = runner.scan(replica)
        for record in unsynced_in(replica_records):
            absorb_path(replica, primary, record.path)
            absorbed.append(record.path)

    with runner.phase("symlink") as symlinked:
        primary_records = runner.scan(primary)
        for path in sorted(missing_from(primary_records, runner.scan(replica))):
            symlink_path(primary, replica, path)
            symlinked.append(path)

    # Compared against the replica as it was before symlinking, so links created
    # above are never candidates.
    with runner.phase("delete_replica") as deleted_replica:
        to_delete = missing_from(replica_records, primary_records)
        for path in sorted(guard_deletions(limit, to_delete, phase="delete_replica")):
            remove_path(replica, path)
            deleted_replica.append(path)

    with runner.phase("save_snapshot") as saved:
        current_paths = record_paths(runner.scan(replica))
        await save_snapshot(
            runner.snapshot_path,
            current_paths,
            meta={
                "saved_at": datetime.now(UTC).isoformat(),
                "primary": str(primary),
                "replica": str(replica),
            },
        )
        saved.extend(sorted(current_paths))

    return ReconcileResult(
        deleted_primary_paths=deleted_primary,
        absorbed_paths=absorbed,
        symlinked_paths=symlinked,
        deleted_replica_paths=deleted_replica,
        snapshot_count=len(current_paths),
    )


async def reconcile(
    primary: Path | str,
    replica: Path | str,
    snapshot_path: Path | str,
    options: SyncOptions | None = None,
    *,
    on_event: EventCallback | None = None,
) -> ReconcileResult:
    """Run one convergence pass between ``primary`` and ``replica``.

    Any failure aborts the remaining phases and is raised as a
    ``ReconciliationError`` chained to the original exception. The snapshot is
    only written when every phase succeeded.
    """
    runner = _make_runner(primary, replica, snapshot_path, options or SyncOptions(), on_event)
    logger.info(f"Starting Mirror Bot: {runner.primary} <- {runner.replica}")
    try:
        result = await _run_phases(runner)
    except Exception as exc:
        raise ReconciliationError("Mirror Bot failed") from exc

    logger.info(
        "Mirror Bot complete: "
        f"{len(result.deleted_primary_paths)} deleted from primary, "
        f"{len(result.absorbed_paths)} absorbed, "
        f"{len(result.symlinked_paths)} symlinked, "
        f"{len(result.deleted_replica_paths)} deleted from replica"
    )
    return result


async def mirror(
    primary: Path | str,
    replica: Path | str,
    snapshot_path: Path | str,
    options: SyncOptions | None = None,
    *,
    on_event: EventCallback | None = None,
) -> ReconcileResult:
    """Reconcile, then normalize permissions on the replica."""
    options = options or SyncOptions()
    result = await reconcile(primary, replica, snapshot_path, options, on_event=on_event)

    runner = _make_runner(primary, replica, snapshot_path, options, on_event)
    try:
        with runner.phase("permissions"):
            set_permissions(
                runner.replica,
                permissions=options.permissions,
                puid=options.puid,
                pgid=options.pgid,
            )
    except Exception as exc:
        raise ReconciliationError("Mirror Bot failed") from exc
    return result

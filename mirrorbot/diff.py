from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from mirrorbot.models import FileRecord


def _as_paths(items: Iterable[str] | Iterable[FileRecord]) -> set[str]:
    return {item.path if isinstance(item, FileRecord) else str(item) for item in items}


def missing_from(
    reference: Iterable[str] | Iterable[FileRecord],
    candidate: Iterable[str] | Iterable[FileRecord],
) -> set[str]:
    """Return paths present in ``reference`` but absent from ``candidate``."""
    return _as_paths(reference) - _as_paths(candidate)


def unsynced_in(records: Iterable[FileRecord]) -> list[FileRecord]:
    """Regular files in a replica that still need to be absorbed into the primary."""
    return sorted((record for record in records if not record.is_symlink), key=lambda r: r.path)


@dataclass(slots=True)
class PassPreview:
    delete_from_primary: list[str]
    absorb: list[str]
    symlink: list[str]
    delete_from_replica: list[str]

    @property
    def has_changes(self) -> bool:
        return bool(
            self.delete_from_primary or self.absorb or self.symlink or self.delete_from_replica
        )


def preview_pass(
    snapshot: Iterable[str],
    primary_records: list[FileRecord],
    replica_records: list[FileRecord],
) -> PassPreview:
    """Estimate what the next reconciliation pass would do, without touching disk.

    Primary deletions are simulated before computing the later phases, the same
    way a real pass applies them before re-scanning.
    """
    delete_from_primary = missing_from(snapshot, replica_records)
    primary_after_delete = _as_paths(primary_records) - delete_from_primary
    absorb = [record.path for record in unsynced_in(replica_records)]
    primary_after_absorb = primary_after_delete | set(absorb)

    return PassPreview(
        delete_from_primary=sorted(delete_from_primary),
        absorb=absorb,
        symlink=sorted(missing_from(primary_after_absorb, replica_records)),
        delete_from_replica=sorted(missing_from(replica_records, primary_after_absorb)),
    )

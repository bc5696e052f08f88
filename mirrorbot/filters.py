from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import PurePosixPath


def _normalize_pattern(pattern: str) -> str:
    normalized = pattern.strip().replace("\\", "/")
    if normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


def _match_pattern(path: str, pattern: str) -> bool:
    path_obj = PurePosixPath(path)
    norm = _normalize_pattern(pattern)
    if not norm:
        return False
    # Directory patterns ("cache/") exclude everything below them.
    if norm.endswith("/"):
        return path.startswith(norm) or f"/{norm}" in f"/{path}"
    return path_obj.match(norm) or path_obj.match(f"**/{norm}")


@dataclass(slots=True, frozen=True)
class PathFilter:
    exclude_patterns: tuple[str, ...] = ()

    def matches(self, path: str) -> bool:
        return not any(_match_pattern(path, pattern) for pattern in self.exclude_patterns)

    def filter_paths(self, paths: Iterable[str]) -> set[str]:
        return {path for path in paths if self.matches(path)}


def build_path_filter(
    exclude_patterns: list[str] | tuple[str, ...] | None = None,
) -> PathFilter:
    exclude = tuple(_normalize_pattern(pattern) for pattern in (exclude_patterns or []) if pattern)
    return PathFilter(exclude_patterns=exclude)

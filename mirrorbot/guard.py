from __future__ import annotations

from collections.abc import Collection
from typing import TypeVar

from loguru import logger

from mirrorbot.exceptions import SafeDeleteExceeded


C = TypeVar("C", bound=Collection)


def guard_deletions(limit: int, candidates: C, *, phase: str | None = None) -> C:
    """Pass ``candidates`` through unless there are more of them than ``limit``.

    A nearly empty source tree (wiped, unmounted, unreadable) shows up as a
    large deletion set; the whole pass is aborted before anything is removed.
    """
    count = len(candidates)
    if count > limit:
        logger.warning(f"Safe delete limit exceeded ({phase or 'deletion'}): {count} > {limit}")
        raise SafeDeleteExceeded(count, limit, phase)
    return candidates

import asyncio
import os
import sys
from pathlib import Path

import pytest
from loguru import logger

from mirrorbot.engine import reconcile
from mirrorbot.models import SyncOptions


@pytest.fixture
def primary(tmp_path):
    d = tmp_path / "primary"
    d.mkdir()
    return d.resolve()


@pytest.fixture
def replica(tmp_path):
    d = tmp_path / "replica"
    d.mkdir()
    return d.resolve()


@pytest.fixture
def snapshot_path(tmp_path):
    return (tmp_path / "state" / "snapshot.db").resolve()


@pytest.fixture
def run_pass(primary, replica, snapshot_path):
    """Run one reconciliation pass against the fixture trees."""

    def _run(options=None, **kwargs):
        return asyncio.run(
            reconcile(primary, replica, snapshot_path, options or SyncOptions(**kwargs))
        )

    return _run


def write(path: Path, content: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


def link(path: Path, target: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    os.symlink(target, path)
    return path


@pytest.fixture(autouse=True)
def reset_loguru():
    """CLI commands reconfigure loguru sinks; restore the default after each test."""
    yield
    logger.remove()
    logger.add(sys.stderr)

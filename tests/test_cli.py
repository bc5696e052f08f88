import asyncio
import json
import os

from typer.testing import CliRunner

from mirrorbot.cli import app
from mirrorbot.config import CONFIG_FILENAME
from mirrorbot.locking import lock_path_for
from mirrorbot.snapshot import load_snapshot, save_snapshot

from conftest import write


runner = CliRunner()


def path_args(primary, replica, snapshot_path):
    return [
        "--primary",
        str(primary),
        "--replica",
        str(replica),
        "--snapshot",
        str(snapshot_path),
    ]


def test_run_converges_trees(primary, replica, snapshot_path, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    write(primary / "a.txt", "alpha")
    write(replica / "b.txt", "beta")

    result = runner.invoke(app, ["run", *path_args(primary, replica, snapshot_path)])

    assert result.exit_code == 0, result.output
    assert "Mirror Bot complete" in result.output
    assert (replica / "a.txt").is_symlink()
    assert (primary / "b.txt").read_text() == "beta"
    assert asyncio.run(load_snapshot(snapshot_path)) == {"a.txt", "b.txt"}
    assert not lock_path_for(snapshot_path).exists()


def test_run_reports_in_sync_on_second_pass(primary, replica, snapshot_path, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    write(primary / "a.txt", "alpha")
    args = ["run", *path_args(primary, replica, snapshot_path)]
    runner.invoke(app, args)

    result = runner.invoke(app, args)

    assert result.exit_code == 0, result.output
    assert "already in sync" in result.output


def test_invalid_number_is_rejected_before_any_work(primary, replica, snapshot_path, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    write(primary / "a.txt")

    result = runner.invoke(
        app,
        ["run", *path_args(primary, replica, snapshot_path), "--safe-delete", "lots"],
    )

    assert result.exit_code == 1
    assert "not a number" in result.output
    assert not (replica / "a.txt").exists()
    assert not snapshot_path.exists()


def test_invalid_puid_is_rejected(primary, replica, snapshot_path, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["run", *path_args(primary, replica, snapshot_path), "--puid", "root"])

    assert result.exit_code == 1
    assert "not a number" in result.output


def test_missing_paths_without_config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["run"])

    assert result.exit_code == 1
    assert "--primary" in result.output


def test_safe_delete_failure_exits_nonzero(primary, replica, snapshot_path, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    write(primary / "a.txt")
    write(primary / "b.txt")
    asyncio.run(save_snapshot(snapshot_path, {"a.txt", "b.txt"}))

    result = runner.invoke(
        app,
        ["run", *path_args(primary, replica, snapshot_path), "--safe-delete", "1"],
    )

    assert result.exit_code == 1
    assert "Mirror Bot failed" in result.output
    assert "SafeDeleteExceeded" in result.output
    assert (primary / "a.txt").exists()
    assert (primary / "b.txt").exists()


def test_held_lock_exits_nonzero(primary, replica, snapshot_path, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    lock_path = lock_path_for(snapshot_path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock_path.write_text(json.dumps({"pid": os.getpid(), "hostname": "elsewhere", "timestamp": "t"}))
    write(primary / "a.txt")

    result = runner.invoke(app, ["run", *path_args(primary, replica, snapshot_path)])

    assert result.exit_code == 1
    assert not (replica / "a.txt").exists()

    result = runner.invoke(app, ["run", *path_args(primary, replica, snapshot_path), "--no-lock"])

    assert result.exit_code == 0, result.output
    assert (replica / "a.txt").is_symlink()


def test_init_then_run_from_config(primary, replica, snapshot_path, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    write(replica / "c.txt", "content")

    result = runner.invoke(
        app,
        ["init", *path_args(primary, replica, snapshot_path), "--safe-delete", "3", "--exclude", "*.part"],
    )

    assert result.exit_code == 0, result.output
    saved = json.loads((tmp_path / CONFIG_FILENAME).read_text())
    assert saved["safe_delete"] == "3"
    assert saved["exclude"] == ["*.part"]

    result = runner.invoke(app, ["run"])

    assert result.exit_code == 0, result.output
    assert (primary / "c.txt").read_text() == "content"
    assert (replica / "c.txt").is_symlink()


def test_init_rejects_bad_permissions(primary, replica, snapshot_path, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(
        app,
        ["init", *path_args(primary, replica, snapshot_path), "--permissions", "rwxr-xr-x"],
    )

    assert result.exit_code == 1
    assert not (tmp_path / CONFIG_FILENAME).exists()


def test_status_previews_without_changes(primary, replica, snapshot_path, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    write(primary / "a.txt")
    write(replica / "b.txt")

    result = runner.invoke(app, ["status", *path_args(primary, replica, snapshot_path)])

    assert result.exit_code == 0, result.output
    assert "Absorb into primary (1)" in result.output
    assert "Symlink into replica (1)" in result.output
    assert "first run" in result.output
    assert not (replica / "a.txt").exists()
    assert not (replica / "b.txt").is_symlink()
    assert not snapshot_path.exists()


def test_status_warns_about_safe_delete_limit(primary, replica, snapshot_path, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    asyncio.run(save_snapshot(snapshot_path, {"a.txt", "b.txt"}))

    result = runner.invoke(
        app,
        ["status", *path_args(primary, replica, snapshot_path), "--safe-delete", "1"],
    )

    assert result.exit_code == 0, result.output
    assert "Delete from primary (2)" in result.output
    assert "exceeds" in result.output


def test_status_ignores_snapshot_entries_under_new_excludes(primary, replica, snapshot_path, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    write(primary / "cache" / "big.bin")
    asyncio.run(save_snapshot(snapshot_path, {"cache/big.bin"}))

    result = runner.invoke(
        app,
        ["status", *path_args(primary, replica, snapshot_path), "--exclude", "cache/"],
    )

    assert result.exit_code == 0, result.output
    assert "Delete from primary" not in result.output
    assert "in sync" in result.output


def test_interrupted_run_exits_130(primary, replica, snapshot_path, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    async def interrupted(*args, **kwargs):
        raise KeyboardInterrupt

    monkeypatch.setattr("mirrorbot.cli.mirror", interrupted)

    result = runner.invoke(app, ["run", *path_args(primary, replica, snapshot_path)])

    assert result.exit_code == 130
    assert "interrupted" in result.output
    assert not snapshot_path.exists()
    assert not lock_path_for(snapshot_path).exists()

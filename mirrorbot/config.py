from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path

from mirrorbot.exceptions import ConfigError
from mirrorbot.models import DEFAULT_SAFE_DELETE_LIMIT, SyncOptions


CONFIG_FILENAME = ".mirrorbot.json"
REQUIRED_KEYS = ("primary", "replica", "snapshot")


def parse_number(value: str | int | None, option: str = "value") -> int | None:
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(text, 10)
    except ValueError:
        raise ConfigError(f"Invalid {option}: {value!r} is not a number.") from None


def parse_permissions(value: str | int | None) -> int | None:
    """Parse an octal mode such as ``"775"`` or ``"0o775"``."""
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if not text:
        return None
    if text.startswith("0o"):
        text = text[2:]
    try:
        mode = int(text, 8)
    except ValueError:
        raise ConfigError(f"Invalid permissions: {value!r} is not an octal mode.") from None
    if mode > 0o7777:
        raise ConfigError(f"Invalid permissions: {value!r} is out of range.")
    return mode


@dataclass(slots=True)
class MirrorConfig:
    primary: str
    replica: str
    snapshot: str
    safe_delete: str | None = None
    permissions: str | None = None
    puid: str | None = None
    pgid: str | None = None
    exclude: list[str] = field(default_factory=list)

    @property
    def primary_path(self) -> Path:
        return Path(self.primary).expanduser().resolve()

    @property
    def replica_path(self) -> Path:
        return Path(self.replica).expanduser().resolve()

    @property
    def snapshot_path(self) -> Path:
        return Path(self.snapshot).expanduser().resolve()

    def to_options(self) -> SyncOptions:
        safe_delete = parse_number(self.safe_delete, "safe delete limit")
        if safe_delete is None:
            safe_delete = DEFAULT_SAFE_DELETE_LIMIT
        if safe_delete < 0:
            raise ConfigError(f"Invalid safe delete limit: {safe_delete} is negative.")
        return SyncOptions(
            safe_delete_limit=safe_delete,
            permissions=parse_permissions(self.permissions),
            puid=parse_number(self.puid, "puid"),
            pgid=parse_number(self.pgid, "pgid"),
            exclude_patterns=tuple(self.exclude),
        )


def config_path(base_dir: Path | None = None) -> Path:
    return (base_dir or Path.cwd()).resolve() / CONFIG_FILENAME


def _optional_text(value) -> str | None:
    if value is None:
        return None
    return str(value)


def load_config(path: Path | None = None) -> MirrorConfig:
    path = Path(path) if path is not None else config_path()
    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {path}. Run `mirrorbot init` or pass --primary/--replica/--snapshot."
        )

    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid config file {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Invalid config file {path}: expected a JSON object")
    missing = [key for key in REQUIRED_KEYS if not data.get(key)]
    if missing:
        raise ConfigError(f"Invalid config file {path}: missing {', '.join(missing)}")

    return MirrorConfig(
        primary=str(data["primary"]),
        replica=str(data["replica"]),
        snapshot=str(data["snapshot"]),
        safe_delete=_optional_text(data.get("safe_delete")),
        permissions=_optional_text(data.get("permissions")),
        puid=_optional_text(data.get("puid")),
        pgid=_optional_text(data.get("pgid")),
        exclude=[str(pattern) for pattern in data.get("exclude") or []],
    )


def save_config(config: MirrorConfig, path: Path | None = None) -> Path:
    path = Path(path) if path is not None else config_path()
    payload = asdict(config)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2)
        fh.write("\n")
    return path


def merge_config(base: MirrorConfig | None, **overrides) -> MirrorConfig:
    """Layer non-empty ``overrides`` (CLI flags) over ``base`` (config file)."""
    values = {key: value for key, value in overrides.items() if value not in (None, [], ())}
    if "exclude" in values:
        values["exclude"] = list(values["exclude"])
    if base is not None:
        return replace(base, **values)

    missing = [key for key in REQUIRED_KEYS if not values.get(key)]
    if missing:
        flags = ", ".join(f"--{key}" for key in missing)
        raise ConfigError(f"Missing required option(s): {flags}")
    return MirrorConfig(**values)

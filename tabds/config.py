"""Library settings: explicit values, then ``TABDS_*`` env vars, then ``tabds.yaml``."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from tabds.ds.types import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "tabds.yaml"
DEFAULT_CACHE_ROOT = Path("~/.cache/tabds").expanduser()
DEFAULT_WRITER_BATCH_SIZE = 1000
DEFAULT_MAX_SHARD_SIZE = 500 * 1024 * 1024  # 500 MiB

_ENV_PREFIX = "TABDS_"


@dataclass
class RemoteConfig:
    """Connection details for an SFTP host serving raw data files."""

    name: str
    host: str
    user: str
    port: int = 22
    key_file: str | None = None


@dataclass
class Settings:
    """Resolved settings.

    Attributes:
        cache_root: Root of prepared datasets, downloads and the registry.
        db_path: SQLite index file; defaults to ``<cache_root>/index.db``.
        writer_batch_size: Examples buffered before a columnar flush.
        max_shard_size: Bytes after which the writer starts a new shard.
        offline: When true, remote files must already be cached.
        remotes: SFTP hosts keyed by name.
    """

    cache_root: Path = DEFAULT_CACHE_ROOT
    db_path: Path | None = None
    writer_batch_size: int = DEFAULT_WRITER_BATCH_SIZE
    max_shard_size: int = DEFAULT_MAX_SHARD_SIZE
    offline: bool = False
    remotes: dict[str, RemoteConfig] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.cache_root = Path(self.cache_root).expanduser()
        if self.db_path is None:
            self.db_path = self.cache_root / "index.db"
        self.db_path = Path(self.db_path).expanduser()

    @property
    def downloads_dir(self) -> Path:
        return self.cache_root / "downloads"

    @property
    def registry_dir(self) -> Path:
        return self.cache_root / "registry"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _parse_bool(value: Any) -> bool:
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _parse_remote(name: str, raw: dict) -> RemoteConfig:
    if "host" not in raw or "user" not in raw:
        raise ConfigError(f"Remote '{name}' requires 'host' and 'user'")
    auth = raw.get("auth") or {}
    return RemoteConfig(
        name=name,
        host=raw["host"],
        user=raw["user"],
        port=int(raw.get("port", 22)),
        key_file=auth.get("key_file"),
    )


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")
    return data


def _from_env() -> dict[str, Any]:
    env: dict[str, Any] = {}
    converters = {
        "cache_root": Path,
        "db_path": Path,
        "writer_batch_size": int,
        "max_shard_size": int,
        "offline": _parse_bool,
    }
    env_names = {"cache_root": "CACHE"}
    for key, convert in converters.items():
        env_name = _ENV_PREFIX + env_names.get(key, key.upper())
        raw = os.environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            env[key] = convert(raw)
        except ValueError as exc:
            raise ConfigError(f"Invalid value for {env_name}: {raw!r}") from exc
    return env


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def load_settings(config_file: str | Path | None = None, **overrides: Any) -> Settings:
    """Resolve :class:`Settings`.

    Precedence: non-``None`` *overrides*, environment variables,
    *config_file* (default ``tabds.yaml`` in the working directory), defaults.

    Raises:
        ConfigError: If the YAML file or an environment value is malformed.
    """
    path = Path(config_file) if config_file else Path(DEFAULT_CONFIG_FILE)
    data = _load_yaml(path)

    values: dict[str, Any] = {}
    for key in ("cache_root", "db_path", "writer_batch_size", "max_shard_size", "offline"):
        if key in data and data[key] is not None:
            values[key] = data[key]
    if "offline" in values:
        values["offline"] = _parse_bool(values["offline"])
    values.update(_from_env())
    values.update({k: v for k, v in overrides.items() if v is not None})

    remotes = {
        name: _parse_remote(name, raw or {})
        for name, raw in (data.get("remotes") or {}).items()
    }
    settings = Settings(**values, remotes=remotes)
    if settings.writer_batch_size <= 0:
        raise ConfigError(f"writer_batch_size must be positive, got {settings.writer_batch_size}")
    logger.debug("Resolved settings: cache_root=%s db_path=%s", settings.cache_root, settings.db_path)
    return settings

"""Engine configuration from ``DAFLINK_*`` environment variables.

A project-root ``.env`` is read first; variables already present in the
environment are never overridden.  Recognised keys::

    DAFLINK_CORPUS_DB            path to corpus.duckdb
    DAFLINK_LINKS_DB             path to links.duckdb
    DAFLINK_SNAPSHOT_PATH        static snapshot JSON (optional)
    DAFLINK_VOLUMES_PATH         volume catalog JSON (optional)
    DAFLINK_CHUNK_SIZE           rulings per pipeline chunk (50)
    DAFLINK_WRITE_RETRIES        retries of a failed chunk write (2)
    DAFLINK_COOCCURRENCE_WINDOW  max tokens between volume and page (3)
    DAFLINK_LOG_LEVEL            DEBUG / INFO / WARNING / ERROR
"""
from __future__ import annotations

import logging
import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from daflink.errors import ConfigurationError
from daflink.volumes import VolumeCatalog, default_catalog, load_volume_catalog

ENV_PREFIX = "DAFLINK_"
PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_DATA_DIR = PROJECT_ROOT / "data"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(frozen=True, slots=True)
class EngineSettings:
    corpus_db: Path = DEFAULT_DATA_DIR / "corpus.duckdb"
    links_db: Path = DEFAULT_DATA_DIR / "links.duckdb"
    snapshot_path: Path | None = None
    volumes_path: Path | None = None
    chunk_size: int = 50
    write_retries: int = 2
    cooccurrence_window: int = 3
    log_level: str = "INFO"

    def with_overrides(self, **overrides: Any) -> EngineSettings:
        """Copy with every non-``None`` override applied, then validated."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        updated = replace(self, **changes)
        updated.validate()
        return updated

    def validate(self) -> None:
        if self.chunk_size < 1:
            raise ConfigurationError(f"chunk_size must be >= 1, got {self.chunk_size}")
        if self.write_retries < 0:
            raise ConfigurationError(f"write_retries must be >= 0, got {self.write_retries}")
        if self.cooccurrence_window < 1:
            raise ConfigurationError(
                f"cooccurrence_window must be >= 1, got {self.cooccurrence_window}"
            )
        if self.log_level.upper() not in _LOG_LEVELS:
            raise ConfigurationError(f"unknown log level {self.log_level!r}")

    def catalog(self) -> VolumeCatalog:
        if self.volumes_path is None:
            return default_catalog()
        return load_volume_catalog(self.volumes_path)


def _load_dotenv(path: Path, environ: MutableMapping[str, str]) -> None:
    """Load ``KEY=value`` lines from *path* without overriding existing keys."""
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip().strip("'\"")
        if key and key not in environ:
            environ[key] = value


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(ENV_PREFIX + name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from None


def _path(env: Mapping[str, str], name: str) -> Path | None:
    raw = env.get(ENV_PREFIX + name, "").strip()
    return Path(raw).expanduser() if raw else None


def load_settings(
    env: Mapping[str, str] | None = None,
    *,
    dotenv_path: Path | None = None,
) -> EngineSettings:
    """Settings from *env* (default ``os.environ`` after reading ``.env``).

    Raises ``ConfigurationError`` for unparsable or out-of-range values.
    """
    if env is None:
        _load_dotenv(dotenv_path or PROJECT_ROOT / ".env", os.environ)
        env = os.environ
    elif dotenv_path is not None:
        merged = dict(env)
        _load_dotenv(dotenv_path, merged)
        env = merged

    defaults = EngineSettings()
    settings = EngineSettings(
        corpus_db=_path(env, "CORPUS_DB") or defaults.corpus_db,
        links_db=_path(env, "LINKS_DB") or defaults.links_db,
        snapshot_path=_path(env, "SNAPSHOT_PATH"),
        volumes_path=_path(env, "VOLUMES_PATH"),
        chunk_size=_int(env, "CHUNK_SIZE", defaults.chunk_size),
        write_retries=_int(env, "WRITE_RETRIES", defaults.write_retries),
        cooccurrence_window=_int(env, "COOCCURRENCE_WINDOW", defaults.cooccurrence_window),
        log_level=env.get(ENV_PREFIX + "LOG_LEVEL", "").strip().upper() or defaults.log_level,
    )
    settings.validate()
    return settings


def configure_logging(level: str = "INFO") -> None:
    """Route library loggers to stderr; stdout stays free for JSON output."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, force=True)

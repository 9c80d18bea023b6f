from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

CONFIG_ENV = "TQ_CONFIG"
DB_ENV = "TQ_DB"
DEFAULT_DB_NAME = "tq.sqlite"


@dataclass(slots=True)
class PathsConfig:
    db: Path
    log: Path | None = None


@dataclass(slots=True)
class RunConfig:
    concurrency: int = 1
    page_size: int = 100
    timeout_seconds: float | None = None


@dataclass(slots=True)
class ReclaimConfig:
    vacuum: bool = True


@dataclass(slots=True)
class AppConfig:
    paths: PathsConfig
    run: RunConfig = field(default_factory=RunConfig)
    reclaim: ReclaimConfig = field(default_factory=ReclaimConfig)


def _mapping(raw: dict, key: str) -> dict:
    value = raw.get(key, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"`{key}` must be a mapping")
    return value


def _positive_int(section: dict, key: str, default: int, name: str) -> int:
    value = int(section.get(key, default))
    if value < 1:
        raise ValueError(f"`{name}` must be >= 1")
    return value


def default_config() -> AppConfig:
    db = Path(os.environ.get(DB_ENV) or DEFAULT_DB_NAME).expanduser()
    return AppConfig(paths=PathsConfig(db=db))


def load_config(path: str | Path | None = None) -> AppConfig:
    if path is None:
        path = os.environ.get(CONFIG_ENV) or None
    if path is None:
        return default_config()

    config_path = Path(path).expanduser().resolve()
    raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("Config root must be a mapping")

    paths_raw = _mapping(raw, "paths")
    run_raw = _mapping(raw, "run")
    reclaim_raw = _mapping(raw, "reclaim")

    def to_path(value: object) -> Path:
        output = Path(str(value)).expanduser()
        if not output.is_absolute():
            output = config_path.parent / output
        return output

    db_value = paths_raw.get("db") or os.environ.get(DB_ENV) or DEFAULT_DB_NAME
    log_value = paths_raw.get("log")
    paths = PathsConfig(
        db=to_path(db_value),
        log=to_path(log_value) if log_value else None,
    )

    timeout_raw = run_raw.get("timeout_seconds")
    run = RunConfig(
        concurrency=_positive_int(run_raw, "concurrency", 1, "run.concurrency"),
        page_size=_positive_int(run_raw, "page_size", 100, "run.page_size"),
        timeout_seconds=float(timeout_raw) if timeout_raw is not None else None,
    )
    if run.timeout_seconds is not None and run.timeout_seconds <= 0:
        raise ValueError("`run.timeout_seconds` must be > 0")

    vacuum = reclaim_raw.get("vacuum", True)
    if not isinstance(vacuum, bool):
        raise ValueError("`reclaim.vacuum` must be a boolean")

    return AppConfig(paths=paths, run=run, reclaim=ReclaimConfig(vacuum=vacuum))


def ensure_local_paths(config: AppConfig) -> None:
    config.paths.db.parent.mkdir(parents=True, exist_ok=True)
    if config.paths.log is not None:
        config.paths.log.parent.mkdir(parents=True, exist_ok=True)

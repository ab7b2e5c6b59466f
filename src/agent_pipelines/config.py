from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

try:
    import tomllib  # py>=3.11
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore

from .errors import ConfigError
from .events import EVENTS_FILENAME
from .result import RESULT_FILENAME, STATUS_FILENAME
from .termination import FixedConfig, Fixed, build_strategy


CONFIG_DIR = ".agent-pipelines"
CONFIG_FILENAME = "pipelines.toml"
CONFIG_ENV = "AGENT_PIPELINES_CONFIG"


# -------------------------
# Dataclasses
# -------------------------


@dataclass(frozen=True)
class FilesConfig:
    # Per-session state lives under run_dir/<session>/
    run_dir: str = ".agent-pipelines/runs"
    events: str = EVENTS_FILENAME
    result: str = RESULT_FILENAME
    status: str = STATUS_FILENAME


@dataclass(frozen=True)
class LoggingConfig:
    verbose: bool = False
    quiet: bool = False
    log_file: str = ""  # empty => console only


@dataclass(frozen=True)
class Config:
    termination: FixedConfig
    files: FilesConfig
    logging: LoggingConfig

    def strategy(self) -> Fixed:
        return Fixed(self.termination)


# -------------------------
# Parsing helpers
# -------------------------


def _coerce_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        v = value.strip().lower()
        if v in {"true", "1", "yes", "y", "on"}:
            return True
        if v in {"false", "0", "no", "n", "off"}:
            return False
    return default


def _table(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    raw = data.get(key, {}) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"[{key}] must be a table")
    return raw


def _load_toml(path: Path) -> Dict[str, Any]:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e


def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    """Merge b into a (recursively for dicts), return new dict."""

    out: Dict[str, Any] = dict(a)
    for k, v in b.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _load_config_data(project_root: Path) -> Tuple[Dict[str, Any], List[Path]]:
    """Return merged toml data and the list of config files read (in order)."""

    paths: List[Path] = []

    # 1) project-local config dir (preferred)
    p1 = project_root / CONFIG_DIR / CONFIG_FILENAME
    if p1.exists():
        paths.append(p1)

    # 2) project root override
    p2 = project_root / CONFIG_FILENAME
    if p2.exists():
        paths.append(p2)

    # 3) explicit env override
    env = os.environ.get(CONFIG_ENV)
    if env:
        p3 = Path(env)
        if not p3.is_absolute():
            p3 = (project_root / p3).resolve()
        if p3.exists():
            paths.append(p3)

    data: Dict[str, Any] = {}
    for p in paths:
        data = _deep_merge(data, _load_toml(p))

    return data, paths


# -------------------------
# Public API
# -------------------------


def load_config(project_root: Path) -> Config:
    """Load and normalize configuration.

    Key behavior:
    - Prefers .agent-pipelines/pipelines.toml (if present).
    - Allows ./pipelines.toml to override.
    - Allows $AGENT_PIPELINES_CONFIG to override both.

    Missing files yield defaults; a file that exists but cannot be parsed
    raises ConfigError.
    """

    data, _read_paths = _load_config_data(project_root)

    files_raw = _table(data, "files")
    logging_raw = _table(data, "logging")

    termination = FixedConfig.from_mapping(_table(data, "termination"))

    files = FilesConfig(
        run_dir=str(files_raw.get("run_dir", FilesConfig.run_dir)),
        events=str(files_raw.get("events", FilesConfig.events)),
        result=str(files_raw.get("result", FilesConfig.result)),
        status=str(files_raw.get("status", FilesConfig.status)),
    )

    log_settings = LoggingConfig(
        verbose=_coerce_bool(logging_raw.get("verbose"), False),
        quiet=_coerce_bool(logging_raw.get("quiet"), False),
        log_file=str(logging_raw.get("log_file", "")),
    )

    return Config(termination=termination, files=files, logging=log_settings)


def load_stage_termination(stage_path: Path, default: Optional[Fixed] = None) -> Fixed:
    """Return the termination strategy declared in a stage.yaml file.

    A stage without a `termination:` block uses `default` (or a fixed
    strategy with default settings).
    """
    try:
        raw = yaml.safe_load(stage_path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read stage {stage_path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"Stage {stage_path} must be a mapping")

    block = raw.get("termination")
    if block is None:
        return default or Fixed()
    if not isinstance(block, dict):
        raise ConfigError(f"Stage {stage_path}: termination must be a mapping")
    return build_strategy(block)

"""Configuration for Flowstack.

Settings come from three layers, later ones winning:

1. built-in defaults,
2. the optional ``<project>/.flowstack/config.yaml`` file,
3. ``FLOWSTACK_*`` environment variables.

Example ``config.yaml``::

    workflows_dir: docs/workflows
    log_level: DEBUG
    check_timeout: 300
    coverage_threshold: 90
    checks:
      test: pytest -q -x
      coverage: coverage report --fail-under=0
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

logger = logging.getLogger("flowstack.config")

STORAGE_DIR_NAME = ".flowstack"
CONFIG_FILE_NAME = "config.yaml"

PROJECT_ROOT_ENV = "FLOWSTACK_PROJECT_ROOT"
STORAGE_DIR_ENV = "FLOWSTACK_STORAGE_DIR"
WORKFLOWS_DIR_ENV = "FLOWSTACK_WORKFLOWS_DIR"
LOG_LEVEL_ENV = "FLOWSTACK_LOG_LEVEL"
CHECK_TIMEOUT_ENV = "FLOWSTACK_CHECK_TIMEOUT"

DEFAULT_CHECK_COMMANDS: Dict[str, str] = {
    "format": "ruff format --check .",
    "lint": "ruff check .",
    "typecheck": "mypy .",
    "test": "pytest -q",
    "coverage": "coverage report",
}


class ConfigError(ValueError):
    """Raised when config.yaml or an environment override is invalid."""


@dataclass(slots=True)
class FlowstackConfig:
    """Resolved settings for one project root."""

    project_root: Path
    storage_dir_name: str = STORAGE_DIR_NAME
    workflows_dir: Optional[Path] = None
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    check_timeout: float = 600.0
    coverage_threshold: Optional[float] = 80.0
    checks: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_CHECK_COMMANDS))

    @property
    def storage_dir(self) -> Path:
        return self.project_root / self.storage_dir_name

    @property
    def config_path(self) -> Path:
        return self.storage_dir / CONFIG_FILE_NAME

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "project_root": str(self.project_root),
            "storage_dir": str(self.storage_dir),
            "workflows_dir": str(self.workflows_dir) if self.workflows_dir else None,
            "log_level": self.log_level,
            "log_file": str(self.log_file) if self.log_file else None,
            "check_timeout": self.check_timeout,
            "coverage_threshold": self.coverage_threshold,
            "checks": dict(self.checks),
        }


def find_project_root(start: Optional[Path] = None, storage_dir_name: str = STORAGE_DIR_NAME) -> Path:
    """Walk up from ``start`` to the first directory holding the storage dir.

    Falls back to ``start`` itself (the cwd by default) when nothing is found.
    """
    current = (start or Path.cwd()).resolve()
    for candidate in [current] + list(current.parents):
        if (candidate / storage_dir_name).is_dir():
            return candidate
    return current


def _resolve_path(value: Union[str, Path], base: Path) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = base / path
    return path.resolve()


def _as_float(value: Any, key: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"'{key}' must be a number, got {value!r}") from e


def _read_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")
    return data


def load_config(
    project_root: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> FlowstackConfig:
    """Build the configuration for a project root.

    Args:
        project_root: Explicit project root. When omitted, FLOWSTACK_PROJECT_ROOT
            is used, then upward discovery of the storage directory.
        environ: Environment mapping, ``os.environ`` by default.
    """
    env = os.environ if environ is None else environ
    storage_dir_name = env.get(STORAGE_DIR_ENV) or STORAGE_DIR_NAME

    if project_root is not None:
        root = Path(project_root).expanduser().resolve()
    elif env.get(PROJECT_ROOT_ENV):
        root = Path(env[PROJECT_ROOT_ENV]).expanduser().resolve()
    else:
        root = find_project_root(storage_dir_name=storage_dir_name)
    if not root.is_dir():
        raise ConfigError(f"Project root '{root}' does not exist")

    config = FlowstackConfig(project_root=root, storage_dir_name=storage_dir_name)
    data = _read_config_file(config.config_path)

    if data.get("workflows_dir"):
        config.workflows_dir = _resolve_path(data["workflows_dir"], root)
    if data.get("log_level"):
        config.log_level = str(data["log_level"]).upper()
    if data.get("log_file"):
        config.log_file = _resolve_path(data["log_file"], root)
    if "check_timeout" in data:
        config.check_timeout = _as_float(data["check_timeout"], "check_timeout")
    if "coverage_threshold" in data:
        threshold = data["coverage_threshold"]
        config.coverage_threshold = None if threshold is None else _as_float(threshold, "coverage_threshold")

    checks = data.get("checks")
    if checks is not None:
        if not isinstance(checks, dict):
            raise ConfigError("'checks' must map check names to shell commands")
        for name, command in checks.items():
            config.checks[str(name).strip().lower()] = str(command)

    # Environment overrides
    if env.get(WORKFLOWS_DIR_ENV):
        config.workflows_dir = _resolve_path(env[WORKFLOWS_DIR_ENV], root)
    if env.get(LOG_LEVEL_ENV):
        config.log_level = env[LOG_LEVEL_ENV].upper()
    if env.get(CHECK_TIMEOUT_ENV):
        config.check_timeout = _as_float(env[CHECK_TIMEOUT_ENV], CHECK_TIMEOUT_ENV)

    logger.debug(f"Loaded configuration for {root}")
    return config

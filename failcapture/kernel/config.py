"""YAML config loading.

The file is a plain mapping; each component reads its own section through a
``from_config`` classmethod, so a partial or missing file is always valid.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from failcapture.kernel.errors import ConfigError


DEFAULT_CONFIG_PATH = Path("config/failure_artifacts.yaml")


def load_config(path: str | Path | None = None) -> dict[str, Any]:
    cfg_path = Path(path).expanduser() if path else DEFAULT_CONFIG_PATH
    if not cfg_path.exists():
        return {}
    try:
        loaded = yaml.safe_load(cfg_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {cfg_path}: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"{cfg_path} must contain a mapping, got {type(loaded).__name__}")
    return loaded


def section(config: dict[str, Any] | None, name: str) -> dict[str, Any]:
    if not isinstance(config, dict):
        return {}
    value = config.get(name, {})
    return value if isinstance(value, dict) else {}
